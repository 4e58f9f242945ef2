import json

import pytest
from flask import Flask

from exchange_sync.sync import (
    SYNC_EXTENSION_KEY,
    get_adapter_readiness,
    get_celery_app,
    init_sync,
    refresh_adapter_readiness,
)
from exchange_sync.sync.celery_app import DEFAULT_QUEUE_NAME


def build_sync_app(tmp_path, **overrides) -> Flask:
    """
    Construct a minimal Flask app for flag and wiring tests.
    """
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir(exist_ok=True)
    app = Flask(__name__, instance_path=str(instance_dir))
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        SYNC_ENABLED=True,
        PRACTICE_PANTHER_ACCESS_TOKEN="token",
    )
    app.config.update(overrides)
    init_sync(app)
    return app


def test_sync_disabled_registers_stub_cli(tmp_path, monkeypatch):
    called = {"flag": False}

    def record_call(*args, **kwargs):
        called["flag"] = True

    monkeypatch.setattr("exchange_sync.sync.check_practicepanther_adapter_readiness", record_call)

    app = build_sync_app(tmp_path, SYNC_ENABLED=False)

    assert called["flag"] is False, "readiness should not be computed when sync is disabled"
    assert "sync" not in app.blueprints
    assert app.extensions[SYNC_EXTENSION_KEY]["celery_app"] is None

    result = app.test_cli_runner().invoke(args=["sync"])
    assert result.exit_code != 0
    assert "Sync commands are unavailable because SYNC_ENABLED=false." in result.output


def test_sync_enabled_registers_blueprint_and_cli(tmp_path):
    app = build_sync_app(tmp_path)

    assert "sync" in app.blueprints
    assert "sync.sync_healthcheck" in app.view_functions

    response = app.test_client().get("/sync/health")
    assert response.status_code == 200
    payload = json.loads(response.data)
    assert payload["enabled"] is True
    assert payload["adapter"]["credential_source"] == "static"

    result = app.test_cli_runner().invoke(args=["sync"])
    assert result.exit_code == 0
    assert "PracticePanther adapter: ready" in result.output

    state = app.extensions[SYNC_EXTENSION_KEY]
    assert state["enabled"] is True
    assert state["celery_app"] is not None


def test_missing_credentials_keep_sync_mounted_but_not_ready(tmp_path, caplog):
    app = build_sync_app(tmp_path, PRACTICE_PANTHER_ACCESS_TOKEN=None)

    readiness = get_adapter_readiness(app)
    assert readiness["status"] == "missing-env"
    assert "sync" in app.blueprints
    assert any("not ready" in record.getMessage() for record in caplog.records)

    result = app.test_cli_runner().invoke(args=["sync"])
    assert "PracticePanther adapter: missing-env" in result.output
    assert "PRACTICE_PANTHER_ACCESS_TOKEN" in result.output


def test_refresh_adapter_readiness_runs_auth_ping(tmp_path):
    app = build_sync_app(tmp_path)

    class RejectingClient:
        def test_connection(self):
            return {"success": False, "message": "Remote API error (401)"}

    readiness = refresh_adapter_readiness(app, require_auth_ping=True, client=RejectingClient())

    assert readiness["status"] == "auth-error"
    assert get_adapter_readiness(app)["status"] == "auth-error"


def test_celery_defaults_to_sqlite_transport(tmp_path):
    sqlite_path = tmp_path / "instance" / "custom.sqlite"

    app = build_sync_app(
        tmp_path,
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
    )

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_always_eager is True


def test_celery_config_json_string_is_applied(tmp_path):
    app = build_sync_app(
        tmp_path,
        CELERY_BROKER_URL="memory://",
        CELERY_RESULT_BACKEND="cache+memory://",
        CELERY_CONFIG='{"task_default_rate_limit": "10/m"}',
    )

    celery_app = get_celery_app(app)
    assert celery_app.conf.broker_url == "memory://"
    assert celery_app.conf.task_default_rate_limit == "10/m"
    assert "sync.full" in celery_app.tasks
    assert "sync.kind" in celery_app.tasks


def test_worker_ping_cli(tmp_path):
    app = build_sync_app(
        tmp_path,
        SYNC_WORKER_ENABLED=True,
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
    )

    result = app.test_cli_runner().invoke(args=["sync", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload


def test_worker_run_invokes_celery(tmp_path, monkeypatch):
    app = build_sync_app(tmp_path, SYNC_WORKER_ENABLED=True)
    celery_app = get_celery_app(app)
    calls = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    result = app.test_cli_runner().invoke(
        args=["sync", "worker", "run", "--loglevel", "debug", "--concurrency", "2", "--pool", "solo", "--beat"]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        DEFAULT_QUEUE_NAME,
        "--concurrency",
        "2",
        "--pool",
        "solo",
        "--beat",
    ]


@pytest.mark.parametrize("flag", [False, True])
def test_init_sync_is_idempotent(tmp_path, flag):
    app = build_sync_app(tmp_path, SYNC_ENABLED=flag)
    init_sync(app)

    assert ("sync" in app.blueprints) is flag
    assert "sync" in app.cli.commands
