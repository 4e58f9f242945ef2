"""
Map parsed PracticePanther records onto local entity fields.

Transformers resolve cross-entity references through the unit of work they
are handed. An unresolved reference is left null, never treated as an error;
the next sync fills it in once the referenced row exists.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

from exchange_sync.models import (
    Contact,
    Exchange,
    ExchangeParticipant,
    ExchangeStatus,
    ParticipantRole,
    SyncKind,
    Task,
    TaskPriority,
    TaskStatus,
    User,
)
from exchange_sync.sync.pipeline.parsing import parse_decimal
from exchange_sync.sync.pipeline.records import RemoteContact, RemoteMatter, RemoteTask
from exchange_sync.sync.pipeline.store import StoreSession

IDENTIFICATION_PERIOD = timedelta(days=45)
COMPLETION_PERIOD = timedelta(days=180)

MATTER_STATUS_MAP: Mapping[str, ExchangeStatus] = {
    "open": ExchangeStatus.PENDING,
    "pending": ExchangeStatus.PENDING,
    "active": ExchangeStatus.DAY_45,
    "in_progress": ExchangeStatus.DAY_180,
    "completed": ExchangeStatus.COMPLETED,
    "closed": ExchangeStatus.COMPLETED,
    "terminated": ExchangeStatus.TERMINATED,
    "cancelled": ExchangeStatus.TERMINATED,
}

TASK_STATUS_MAP: Mapping[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "in_progress": TaskStatus.IN_PROGRESS,
    "completed": TaskStatus.COMPLETED,
    "cancelled": TaskStatus.CANCELLED,
    "on_hold": TaskStatus.ON_HOLD,
}

TASK_PRIORITY_MAP: Mapping[str, TaskPriority] = {
    "low": TaskPriority.LOW,
    "normal": TaskPriority.MEDIUM,
    "medium": TaskPriority.MEDIUM,
    "high": TaskPriority.HIGH,
    "urgent": TaskPriority.URGENT,
}

CLIENT_PERMISSIONS = {"view": True, "upload": True, "message": True}
COORDINATOR_PERMISSIONS = {"view": True, "edit": True, "upload": True, "message": True, "manage": True}


def map_matter_status(value: str | None) -> ExchangeStatus:
    return MATTER_STATUS_MAP.get((value or "").strip().lower(), ExchangeStatus.PENDING)


def map_task_status(value: str | None) -> TaskStatus:
    return TASK_STATUS_MAP.get((value or "").strip().lower(), TaskStatus.PENDING)


def map_task_priority(value: str | None) -> TaskPriority:
    return TASK_PRIORITY_MAP.get((value or "").strip().lower(), TaskPriority.MEDIUM)


def format_address(record: RemoteContact) -> str | None:
    parts = [
        part
        for part in (record.address_line_1, record.address_line_2, record.city, record.state, record.zip_code)
        if part
    ]
    return ", ".join(parts) if parts else None


def compute_deadlines(start: datetime | None):
    """Return ``(identification_deadline, completion_deadline)`` dates for a start timestamp."""

    if start is None:
        return None, None
    start_day = start.date()
    return start_day + IDENTIFICATION_PERIOD, start_day + COMPLETION_PERIOD


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContactTransformer:
    kind = SyncKind.CONTACTS
    label = "Contact"
    model = Contact
    key_column = "pp_contact_id"

    def transform(self, record: RemoteContact, lookup: StoreSession) -> Dict[str, Any]:
        return {
            "first_name": record.first_name or "",
            "last_name": record.last_name or "",
            "email": record.email,
            "phone": record.phone,
            "company": record.company,
            "address": format_address(record),
            "pp_data": dict(record.raw),
            "last_sync_at": _now(),
        }

    def after_upsert(self, entity: Contact, record: RemoteContact, uow: StoreSession) -> None:
        return None


class MatterTransformer:
    kind = SyncKind.MATTERS
    label = "Matter"
    model = Exchange
    key_column = "pp_matter_id"

    def transform(self, record: RemoteMatter, lookup: StoreSession) -> Dict[str, Any]:
        client_id = None
        if record.client_id:
            client = lookup.find_one(Contact, pp_contact_id=record.client_id)
            client_id = client.id if client is not None else None

        identification_deadline, completion_deadline = compute_deadlines(record.opened_at)
        return {
            "name": record.display_name or record.name or f"Matter {record.id}",
            "status": map_matter_status(record.status),
            "client_id": client_id,
            "start_date": record.opened_at,
            "completion_date": record.closed_at,
            "exchange_value": parse_decimal(record.exchange_value),
            "notes": record.description or "",
            "identification_deadline": identification_deadline,
            "completion_deadline": completion_deadline,
            "pp_data": dict(record.raw),
            "last_sync_at": _now(),
        }

    def after_upsert(self, entity: Exchange, record: RemoteMatter, uow: StoreSession) -> None:
        """(Re)establish client and coordinator participant links."""

        if entity.client_id is not None:
            uow.find_or_create_by(
                ExchangeParticipant,
                {"exchange_id": entity.id, "contact_id": entity.client_id},
                {"role": ParticipantRole.CLIENT, "permissions": dict(CLIENT_PERMISSIONS)},
            )

        for email in record.assigned_user_emails:
            user = uow.find_one(User, email=email)
            if user is None:
                continue
            uow.find_or_create_by(
                ExchangeParticipant,
                {"exchange_id": entity.id, "user_id": user.id},
                {"role": ParticipantRole.COORDINATOR, "permissions": dict(COORDINATOR_PERMISSIONS)},
            )


class TaskTransformer:
    kind = SyncKind.TASKS
    label = "Task"
    model = Task
    key_column = "pp_task_id"

    def transform(self, record: RemoteTask, lookup: StoreSession) -> Dict[str, Any]:
        exchange_id = None
        if record.matter_id:
            exchange = lookup.find_one(Exchange, pp_matter_id=record.matter_id)
            exchange_id = exchange.id if exchange is not None else None

        assigned_to = None
        if record.assigned_to_email:
            user = lookup.find_one(User, email=record.assigned_to_email)
            assigned_to = user.id if user is not None else None

        return {
            "title": record.title or f"Task {record.id}",
            "description": record.description or "",
            "status": map_task_status(record.status),
            "priority": map_task_priority(record.priority),
            "exchange_id": exchange_id,
            "assigned_to": assigned_to,
            "due_date": record.due_date,
            "completed_at": record.completed_at,
            "pp_data": dict(record.raw),
            "last_sync_at": _now(),
        }

    def after_upsert(self, entity: Task, record: RemoteTask, uow: StoreSession) -> None:
        return None


TRANSFORMERS = {
    SyncKind.CONTACTS: ContactTransformer(),
    SyncKind.MATTERS: MatterTransformer(),
    SyncKind.TASKS: TaskTransformer(),
}


def get_transformer(kind: SyncKind | str):
    return TRANSFORMERS[SyncKind(kind)]
