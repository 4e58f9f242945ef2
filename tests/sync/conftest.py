from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sync_fakes import FakeRemoteSession, make_contact, make_matter, make_task

from exchange_sync.models import SyncKind, SyncRun, SyncRunStatus, db
from exchange_sync.sync import init_sync


@pytest.fixture
def sync_app(app):
    app.config.update(
        {
            "SYNC_ENABLED": True,
            "PRACTICE_PANTHER_ACCESS_TOKEN": "test-access-token",
            "SYNC_UPSERT_MAX_WORKERS": 1,
        }
    )
    init_sync(app)
    yield app


@pytest.fixture
def fake_remote():
    return FakeRemoteSession(
        {
            "contacts": [make_contact(i) for i in range(1, 4)],
            "matters": [make_matter(1, client_index=1), make_matter(2, client_index=99)],
            "tasks": [make_task(1, matter_index=1), make_task(2)],
        }
    )


@pytest.fixture
def run_factory(app):
    def _factory(
        *,
        kind: SyncKind = SyncKind.FULL,
        status: SyncRunStatus = SyncRunStatus.SUCCESS,
        account: str = "default",
        started_offset_minutes: int = 0,
        duration_seconds: int | None = 120,
        processed: int = 0,
        created: int = 0,
        updated: int = 0,
        error_message: str | None = None,
        details: dict | None = None,
    ) -> SyncRun:
        started_at = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(minutes=started_offset_minutes)
        completed_at = started_at + timedelta(seconds=duration_seconds) if duration_seconds is not None else None
        run = SyncRun(
            kind=kind,
            status=status,
            account=account,
            started_at=started_at,
            completed_at=completed_at,
            records_processed=processed,
            records_created=created,
            records_updated=updated,
            error_message=error_message,
            details=details,
        )
        db.session.add(run)
        db.session.commit()
        return run

    return _factory
