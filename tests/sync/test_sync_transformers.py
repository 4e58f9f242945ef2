from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from exchange_sync.models import (
    Contact,
    Exchange,
    ExchangeParticipant,
    ExchangeStatus,
    ParticipantRole,
    SyncKind,
    TaskPriority,
    TaskStatus,
    User,
    db,
)
from exchange_sync.sync.pipeline.records import parse_record
from exchange_sync.sync.pipeline.store import SqlAlchemyStore
from exchange_sync.sync.pipeline.transformers import (
    CLIENT_PERMISSIONS,
    COORDINATOR_PERMISSIONS,
    compute_deadlines,
    format_address,
    get_transformer,
    map_matter_status,
    map_task_priority,
    map_task_status,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "remote, expected",
    [
        ("open", ExchangeStatus.PENDING),
        ("pending", ExchangeStatus.PENDING),
        ("active", ExchangeStatus.DAY_45),
        ("in_progress", ExchangeStatus.DAY_180),
        ("completed", ExchangeStatus.COMPLETED),
        ("closed", ExchangeStatus.COMPLETED),
        ("terminated", ExchangeStatus.TERMINATED),
        ("cancelled", ExchangeStatus.TERMINATED),
        ("Active", ExchangeStatus.DAY_45),
        ("something-new", ExchangeStatus.PENDING),
        (None, ExchangeStatus.PENDING),
    ],
)
def test_matter_status_mapping(remote, expected):
    assert map_matter_status(remote) is expected


@pytest.mark.unit
def test_task_status_and_priority_mapping_defaults():
    assert map_task_status("on_hold") is TaskStatus.ON_HOLD
    assert map_task_status("weird") is TaskStatus.PENDING
    assert map_task_priority("normal") is TaskPriority.MEDIUM
    assert map_task_priority("URGENT") is TaskPriority.URGENT
    assert map_task_priority(None) is TaskPriority.MEDIUM


@pytest.mark.unit
def test_compute_deadlines_from_start_date():
    identification, completion = compute_deadlines(datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert identification == date(2024, 2, 15)
    assert completion == date(2024, 6, 29)
    assert compute_deadlines(None) == (None, None)


@pytest.mark.unit
def test_format_address_skips_blank_parts():
    record = parse_record(
        SyncKind.CONTACTS,
        {"id": "c-1", "address_line_1": "1 Main St", "city": "Denver", "state": "CO", "zip_code": "80202"},
    )
    assert format_address(record) == "1 Main St, Denver, CO, 80202"
    assert format_address(parse_record(SyncKind.CONTACTS, {"id": "c-2"})) is None


def _apply(kind, payload):
    """Run transform + find-or-create + after_upsert in one unit of work."""
    transformer = get_transformer(kind)
    record = parse_record(kind, payload)
    with SqlAlchemyStore().unit_of_work() as uow:
        fields = transformer.transform(record, uow)
        entity, created = uow.find_or_create(transformer.model, transformer.key_column, record.id, fields)
        if not created:
            uow.update(entity, fields)
        transformer.after_upsert(entity, record, uow)
        return entity.id, created


@pytest.mark.integration
def test_matter_transform_resolves_client_and_links_participants():
    coordinator = User(username="coord", email="coord@example.com", first_name="Casey")
    db.session.add(coordinator)
    db.session.commit()

    _apply(SyncKind.CONTACTS, {"id": "c-1", "first_name": "Ada", "last_name": "Lovelace"})
    matter_payload = {
        "id": "m-1",
        "display_name": "Lovelace 1031",
        "status": "active",
        "opened_at": "2024-01-01T00:00:00Z",
        "client": {"id": "c-1"},
        "assigned_users": [{"email": "coord@example.com"}, {"email": "unknown@example.com"}],
        "custom_fields": {"exchange_value": "$1,250,000.00"},
    }
    exchange_id, created = _apply(SyncKind.MATTERS, matter_payload)
    assert created is True

    db.session.expire_all()
    exchange = db.session.get(Exchange, exchange_id)
    client = Contact.query.filter_by(pp_contact_id="c-1").one()
    assert exchange.name == "Lovelace 1031"
    assert exchange.status is ExchangeStatus.DAY_45
    assert exchange.client_id == client.id
    assert exchange.exchange_value == 1250000.0
    assert exchange.identification_deadline == date(2024, 2, 15)
    assert exchange.completion_deadline == date(2024, 6, 29)

    participants = ExchangeParticipant.query.filter_by(exchange_id=exchange_id).all()
    roles = {participant.role: participant for participant in participants}
    assert set(roles) == {ParticipantRole.CLIENT, ParticipantRole.COORDINATOR}
    assert roles[ParticipantRole.CLIENT].permissions == CLIENT_PERMISSIONS
    assert roles[ParticipantRole.COORDINATOR].permissions == COORDINATOR_PERMISSIONS
    assert roles[ParticipantRole.COORDINATOR].user_id == coordinator.id

    # Re-applying the same matter never duplicates participant links.
    _apply(SyncKind.MATTERS, matter_payload)
    assert ExchangeParticipant.query.filter_by(exchange_id=exchange_id).count() == 2


@pytest.mark.integration
def test_matter_with_unsynced_client_leaves_reference_null():
    exchange_id, _ = _apply(
        SyncKind.MATTERS,
        {"id": "m-2", "name": "Orphan", "client": {"id": "c-missing"}, "custom_fields": {"exchange_value": "N/A"}},
    )
    exchange = db.session.get(Exchange, exchange_id)
    assert exchange.client_id is None
    assert exchange.exchange_value is None
    assert exchange.status is ExchangeStatus.PENDING
    assert exchange.identification_deadline is None
    assert ExchangeParticipant.query.count() == 0

    # Once the contact exists the next pass fills the reference in.
    _apply(SyncKind.CONTACTS, {"id": "c-missing", "first_name": "Late"})
    _apply(SyncKind.MATTERS, {"id": "m-2", "name": "Orphan", "client": {"id": "c-missing"}})
    db.session.expire_all()
    assert db.session.get(Exchange, exchange_id).client_id is not None


@pytest.mark.integration
def test_task_transform_resolves_exchange_and_assignee():
    user = User(username="worker", email="worker@example.com")
    db.session.add(user)
    db.session.commit()
    exchange_id, _ = _apply(SyncKind.MATTERS, {"id": "m-1", "name": "Parent"})

    record = parse_record(
        SyncKind.TASKS,
        {
            "id": "t-1",
            "status": "completed",
            "priority": "low",
            "matter": {"id": "m-1"},
            "assigned_to": {"email": "worker@example.com"},
        },
    )
    with SqlAlchemyStore().unit_of_work() as uow:
        fields = get_transformer(SyncKind.TASKS).transform(record, uow)

    assert fields["title"] == "Task t-1"
    assert fields["exchange_id"] == exchange_id
    assert fields["assigned_to"] == user.id
    assert fields["status"] is TaskStatus.COMPLETED
    assert fields["priority"] is TaskPriority.LOW
    assert fields["pp_data"]["id"] == "t-1"
