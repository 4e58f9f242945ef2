"""
Kind-tagged, immutable views over raw PracticePanther payloads.

Each record exposes the fields the transformers read. Anything else survives
only in ``raw``, which is stored verbatim as ``pp_data``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Tuple, Union

from exchange_sync.models import SyncKind
from exchange_sync.sync.errors import TransformError
from exchange_sync.sync.pipeline.parsing import coerce_str, external_id, nested_id, parse_datetime


@dataclass(frozen=True)
class RemoteContact:
    kind = SyncKind.CONTACTS

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    address_line_1: str | None = None
    address_line_2: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteContact":
        record_id = external_id(payload)
        return cls(
            id=record_id,
            first_name=coerce_str(payload.get("first_name")),
            last_name=coerce_str(payload.get("last_name")),
            email=coerce_str(payload.get("email")),
            phone=coerce_str(payload.get("phone")),
            company=coerce_str(payload.get("company")),
            address_line_1=coerce_str(payload.get("address_line_1")),
            address_line_2=coerce_str(payload.get("address_line_2")),
            city=coerce_str(payload.get("city")),
            state=coerce_str(payload.get("state")),
            zip_code=coerce_str(payload.get("zip_code")),
            raw=payload,
        )


@dataclass(frozen=True)
class RemoteMatter:
    kind = SyncKind.MATTERS

    id: str
    name: str | None = None
    display_name: str | None = None
    status: str | None = None
    description: str | None = None
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    client_id: str | None = None
    assigned_user_emails: Tuple[str, ...] = ()
    exchange_value: Any = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteMatter":
        record_id = external_id(payload)
        assigned = payload.get("assigned_users") or []
        if not isinstance(assigned, list):
            raise TransformError("assigned_users must be a list")
        emails = tuple(
            email
            for email in (coerce_str(user.get("email")) for user in assigned if isinstance(user, dict))
            if email
        )
        custom_fields = payload.get("custom_fields") or {}
        return cls(
            id=record_id,
            name=coerce_str(payload.get("name")),
            display_name=coerce_str(payload.get("display_name")),
            status=coerce_str(payload.get("status")),
            description=payload.get("description") or None,
            opened_at=parse_datetime(payload.get("opened_at"), field_name="opened_at"),
            closed_at=parse_datetime(payload.get("closed_at"), field_name="closed_at"),
            client_id=nested_id(payload, "client"),
            assigned_user_emails=emails,
            exchange_value=custom_fields.get("exchange_value") if isinstance(custom_fields, dict) else None,
            raw=payload,
        )


@dataclass(frozen=True)
class RemoteTask:
    kind = SyncKind.TASKS

    id: str
    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    matter_id: str | None = None
    assigned_to_email: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteTask":
        record_id = external_id(payload)
        assigned_to = payload.get("assigned_to")
        return cls(
            id=record_id,
            title=coerce_str(payload.get("title")),
            description=payload.get("description") or None,
            status=coerce_str(payload.get("status")),
            priority=coerce_str(payload.get("priority")),
            due_date=parse_datetime(payload.get("due_date"), field_name="due_date"),
            completed_at=parse_datetime(payload.get("completed_at"), field_name="completed_at"),
            matter_id=nested_id(payload, "matter"),
            assigned_to_email=coerce_str(assigned_to.get("email")) if isinstance(assigned_to, dict) else None,
            raw=payload,
        )


RemoteRecord = Union[RemoteContact, RemoteMatter, RemoteTask]

RECORD_TYPES = {
    SyncKind.CONTACTS: RemoteContact,
    SyncKind.MATTERS: RemoteMatter,
    SyncKind.TASKS: RemoteTask,
}


def parse_record(kind: SyncKind, payload: Any) -> RemoteRecord:
    """Parse a raw payload into the record type for ``kind``."""

    try:
        record_type = RECORD_TYPES[SyncKind(kind)]
    except (KeyError, ValueError) as exc:
        raise TransformError(f"No record type for kind {kind!r}") from exc
    return record_type.from_payload(payload)
