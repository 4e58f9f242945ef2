from __future__ import annotations

import pytest

from exchange_sync.models import SyncKind, SyncRunStatus
from exchange_sync.sync import SYNC_EXTENSION_KEY, get_celery_app

pytestmark = pytest.mark.integration


def test_health_reports_flags_and_adapter(sync_app, client):
    response = client.get("/sync/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["enabled"] is True
    assert payload["adapter"]["name"] == "practicepanther"
    assert payload["adapter"]["status"] == "ready"
    assert payload["adapter"]["credential_source"] == "static"


def test_status_endpoint(sync_app, client, run_factory):
    run_factory(kind=SyncKind.FULL, processed=12)

    response = client.get("/sync/status")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["last_full_sync"]["records_processed"] == 12
    assert payload["entity_counts"] == {"contacts": 0, "exchanges": 0, "tasks": 0}
    assert payload["statistics"]["success_rate"] == 100


def test_runs_list_filters_and_paginates(sync_app, client, run_factory):
    run_factory(kind=SyncKind.CONTACTS)
    run_factory(kind=SyncKind.MATTERS, status=SyncRunStatus.ERROR, error_message="boom")
    run_factory(kind=SyncKind.TASKS, started_offset_minutes=5)

    response = client.get("/sync/runs?page_size=2")
    payload = response.get_json()
    assert response.status_code == 200
    assert payload["total"] == 3
    assert payload["total_pages"] == 2
    assert len(payload["runs"]) == 2

    errors = client.get("/sync/runs?status=error").get_json()
    assert [run["kind"] for run in errors["runs"]] == ["matters"]
    assert errors["runs"][0]["error_message"] == "boom"

    kinds = client.get("/sync/runs?kind=contacts,tasks&sort=started_at").get_json()
    assert [run["kind"] for run in kinds["runs"]] == ["tasks", "contacts"]


def test_runs_list_rejects_invalid_filters(sync_app, client):
    response = client.get("/sync/runs?sort=-secret")
    assert response.status_code == 400
    assert "Unsupported sort field" in response.get_json()["error"]

    assert client.get("/sync/runs?status=paused").status_code == 400
    assert client.get("/sync/runs?page=zero").status_code == 400


def test_run_detail_hides_traceback(sync_app, client, run_factory):
    run = run_factory(
        status=SyncRunStatus.ERROR,
        error_message="Remote API error (500)",
        details={"contacts": {"processed": 3, "created": 3, "updated": 0, "errors": []}, "traceback": "..."},
    )

    response = client.get(f"/sync/runs/{run.id}")

    assert response.status_code == 200
    detail = response.get_json()
    assert detail["id"] == run.id
    assert detail["status"] == "error"
    assert detail["details"]["contacts"]["created"] == 3
    assert "traceback" not in detail["details"]


def test_run_detail_not_found(sync_app, client):
    response = client.get("/sync/runs/424242")
    assert response.status_code == 404
    assert response.get_json()["error"] == "Sync run 424242 not found."


def test_endpoints_return_404_when_sync_disabled(sync_app, client):
    sync_app.config["SYNC_ENABLED"] = False

    for path in ("/sync/status", "/sync/runs", "/sync/runs/1"):
        response = client.get(path)
        assert response.status_code == 404
        assert response.get_json()["error"] == "Sync is disabled."


def test_worker_health_disabled_when_worker_flag_off(sync_app, client):
    response = client.get("/sync/worker_health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "disabled"
    assert payload["worker_enabled"] is False
    assert "SYNC_WORKER_ENABLED" in payload["message"]


def test_worker_health_runs_heartbeat(sync_app, client, monkeypatch):
    monkeypatch.setitem(sync_app.extensions[SYNC_EXTENSION_KEY], "worker_enabled", True)
    celery_app = get_celery_app(sync_app)
    monkeypatch.setattr(celery_app.conf, "task_always_eager", True)

    response = client.get("/sync/worker_health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["heartbeat"]["status"] == "ok"
    assert payload["queue"] == "sync"


def test_worker_health_rejects_non_numeric_timeout(sync_app, client):
    response = client.get("/sync/worker_health?timeout=abc")

    assert response.status_code == 400
    assert response.get_json() == {"error": "timeout must be a number of seconds."}


def test_app_health_and_metrics_endpoints(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.get_json() == {"status": "ok", "app": "exchange-sync"}

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert b"sync_practicepanther_adapter_enabled" in metrics.data
