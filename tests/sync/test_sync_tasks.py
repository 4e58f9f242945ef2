from __future__ import annotations

import pytest
from sync_fakes import FakeResponse

from exchange_sync.models import SyncKind, SyncRun, SyncRunStatus
from exchange_sync.sync import get_celery_app
from exchange_sync.sync.adapters.practicepanther.credentials import StaticTokenProvider
from exchange_sync.sync.celery_app import DEFAULT_QUEUE_NAME, build_beat_schedule, build_celery_conf
from exchange_sync.sync.errors import RunFatalError
from exchange_sync.sync.pipeline.orchestrator import create_orchestrator
from exchange_sync.sync.tasks import execute_sync, run_result_payload

pytestmark = pytest.mark.integration


@pytest.fixture
def remote_orchestrator(monkeypatch, fake_remote):
    """Route task-built orchestrators to the in-memory remote."""

    def factory(config, **kwargs):
        return create_orchestrator(
            config,
            http_session=fake_remote,
            credentials=StaticTokenProvider("test-token"),
            sleep_fn=lambda _seconds: None,
        )

    monkeypatch.setattr("exchange_sync.sync.tasks.create_orchestrator", factory)
    return fake_remote


def _task(app, name):
    celery_app = get_celery_app(app)
    assert celery_app is not None
    return celery_app.tasks[name]


def test_execute_sync_returns_run_payload(sync_app, remote_orchestrator, coordinator_user):
    payload = execute_sync("contacts", triggered_by_user_id=coordinator_user.id)

    assert payload["kind"] == "contacts"
    assert payload["status"] == "success"
    assert payload["records_created"] == 3
    assert payload["triggered_by"]["id"] == coordinator_user.id
    assert payload["details"]["contacts"]["processed"] == 3


def test_full_task_runs_through_celery(sync_app, remote_orchestrator):
    result = _task(sync_app, "sync.full").apply(kwargs={"triggered_by_user_id": None}, throw=True)

    payload = result.get()
    assert payload["kind"] == "full"
    assert payload["records_processed"] == 7
    assert SyncRun.query.one().status is SyncRunStatus.SUCCESS


def test_kind_task_accepts_kind_name(sync_app, remote_orchestrator):
    payload = _task(sync_app, "sync.kind").apply(kwargs={"kind": "tasks"}, throw=True).get()

    assert payload["kind"] == "tasks"
    assert [path for path, _page in remote_orchestrator.paths()] == ["tasks"]


def test_task_is_skipped_while_another_run_is_active(sync_app, remote_orchestrator, run_factory):
    active = run_factory(status=SyncRunStatus.RUNNING, duration_seconds=None)

    payload = _task(sync_app, "sync.full").apply(throw=True).get()

    assert payload["status"] == "skipped"
    assert payload["active_run_id"] == active.id
    assert remote_orchestrator.calls == []


def test_task_failure_propagates_and_marks_run(sync_app, remote_orchestrator):
    remote_orchestrator.script("contacts", 1, FakeResponse(status_code=503, text="maintenance"))

    with pytest.raises(RunFatalError):
        _task(sync_app, "sync.kind").apply(kwargs={"kind": "contacts"}, throw=True)

    run = SyncRun.query.one()
    assert run.status is SyncRunStatus.ERROR
    assert "503" in run.error_message


def test_mark_stale_runs_task(sync_app, run_factory):
    run_factory(status=SyncRunStatus.RUNNING, started_offset_minutes=24 * 60, duration_seconds=None)

    payload = _task(sync_app, "sync.mark_stale_runs").apply(throw=True).get()

    assert payload == {"marked": 1}


def test_prune_runs_task_uses_configured_retention(sync_app, run_factory):
    sync_app.config["SYNC_RUN_RETENTION_DAYS"] = 7
    run_factory(started_offset_minutes=8 * 24 * 60)
    run_factory(status=SyncRunStatus.ERROR, started_offset_minutes=8 * 24 * 60, error_message="boom")
    run_factory(started_offset_minutes=6 * 24 * 60)

    payload = _task(sync_app, "sync.prune_runs").apply(throw=True).get()

    assert payload == {"deleted": 2}
    assert SyncRun.query.count() == 1


def test_healthcheck_task(sync_app):
    payload = _task(sync_app, "sync.healthcheck").apply(throw=True).get()

    assert payload["status"] == "ok"
    assert "timestamp" in payload


def test_run_result_payload_drops_traceback(run_factory):
    run = run_factory(
        kind=SyncKind.MATTERS,
        status=SyncRunStatus.ERROR,
        error_message="boom",
        details={"error": "boom", "traceback": "Traceback (most recent call last): ..."},
    )

    payload = run_result_payload(run)

    assert payload["details"] == {"error": "boom"}
    assert payload["error_message"] == "boom"


def test_beat_schedule_runs_daily_full_sync_stale_sweep_and_prune(app):
    app.config.update({"SYNC_FULL_SCHEDULE_HOUR": 4, "SYNC_FULL_SCHEDULE_MINUTE": 30})

    schedule = build_beat_schedule(app)

    assert schedule["sync-full-daily"]["task"] == "sync.full"
    assert schedule["sync-full-daily"]["schedule"].hour == {4}
    assert schedule["sync-full-daily"]["schedule"].minute == {30}
    assert schedule["sync-mark-stale-runs"]["task"] == "sync.mark_stale_runs"
    assert schedule["sync-prune-runs"]["task"] == "sync.prune_runs"
    assert schedule["sync-prune-runs"]["schedule"].hour == {3}
    assert all(entry["options"]["queue"] == DEFAULT_QUEUE_NAME for entry in schedule.values())


def test_sync_tasks_have_no_time_limits(sync_app):
    conf = build_celery_conf(sync_app)

    assert conf["task_time_limit"] is None
    assert conf["task_soft_time_limit"] is None
    celery_app = get_celery_app(sync_app)
    assert celery_app.conf.task_time_limit is None
    assert celery_app.conf.task_soft_time_limit is None
