"""Configuration, environment validation and logging setup"""

import json
import logging
import sys

import pytest
from flask import Flask

from config.base import _coerce_bool, _parse_int
from config.validation import validate_and_exit, validate_environment
from exchange_sync.utils.logging_config import JSONFormatter, setup_logging

PRODUCTION_ENV = {
    "SECRET_KEY": "a" * 64,
    "DATABASE_URL": "postgresql://sync@db/exchange_sync",
}


class TestEnvironmentValidation:
    """Production startup validation"""

    def test_non_production_is_not_validated(self):
        assert validate_environment("development", env={}) == (True, [])
        assert validate_environment("testing", env={}) == (True, [])

    def test_production_requires_secret_key_and_database(self):
        is_valid, errors = validate_environment("production", env={"SECRET_KEY": "your-secret-key"})

        assert is_valid is False
        assert any("SECRET_KEY" in error for error in errors)
        assert any("DATABASE_URL" in error for error in errors)

    def test_sync_requires_a_credential_source(self):
        is_valid, errors = validate_environment("production", env={**PRODUCTION_ENV, "SYNC_ENABLED": "true"})

        assert is_valid is False
        assert errors == [
            "SYNC_ENABLED=true requires PRACTICE_PANTHER_ACCESS_TOKEN or PP_CLIENT_ID/PP_CLIENT_SECRET."
        ]

    def test_oauth_pair_must_be_complete(self):
        env = {**PRODUCTION_ENV, "SYNC_ENABLED": "1", "PP_CLIENT_ID": "id"}
        _, errors = validate_environment("production", env=env)
        assert errors == ["PP_CLIENT_ID and PP_CLIENT_SECRET must be set together to enable OAuth refresh."]

    def test_worker_requires_broker_in_production(self):
        env = {
            **PRODUCTION_ENV,
            "SYNC_ENABLED": "true",
            "SYNC_WORKER_ENABLED": "true",
            "PRACTICE_PANTHER_ACCESS_TOKEN": "token",
        }
        _, errors = validate_environment("production", env=env)
        assert errors == ["CELERY_BROKER_URL is required in production when SYNC_WORKER_ENABLED=true."]

        env["CELERY_BROKER_URL"] = "redis://cache:6379/0"
        assert validate_environment("production", env=env) == (True, [])

    def test_validate_and_exit_exits_on_errors(self, monkeypatch, capsys):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(SystemExit) as exc:
            validate_and_exit("production")

        assert exc.value.code == 1
        assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err


class TestConfigCoercion:
    @pytest.mark.parametrize(
        "raw, expected",
        [("true", True), ("ON", True), ("1", True), ("no", False), ("0", False), ("maybe", False), (None, False)],
    )
    def test_coerce_bool(self, raw, expected):
        assert _coerce_bool(raw) is expected

    def test_parse_int_falls_back_on_invalid_values(self):
        assert _parse_int("25", 50) == 25
        assert _parse_int("", 50) == 50
        assert _parse_int("fifty", 50) == 50
        assert _parse_int("0", 50, minimum=1) == 50
        assert _parse_int(None, None) is None

    def test_testing_config_is_loaded(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SYNC_ENABLED"] is True
        assert app.config["SYNC_PAGE_SIZE"] == 100
        assert app.config["SYNC_STALE_RUN_MINUTES"] == 360
        assert app.config["SYNC_RUN_RETENTION_DAYS"] == 30
        assert app.config["ENABLE_FILE_LOGGING"] is False


@pytest.fixture
def logging_app(tmp_path):
    app = Flask("logging_test")
    app.config.update(
        LOG_LEVEL="INFO",
        LOG_FORMAT="json",
        LOG_DIR=str(tmp_path / "logs"),
        APP_NAME="exchange-sync",
        ENABLE_FILE_LOGGING=True,
        ENABLE_CONSOLE_LOGGING=False,
    )
    yield app
    app.config.update(ENABLE_FILE_LOGGING=False, ENABLE_CONSOLE_LOGGING=False)
    setup_logging(app)


class TestLoggingSetup:
    def test_json_file_log_carries_extra_fields(self, logging_app, tmp_path):
        setup_logging(logging_app)

        logging.getLogger("exchange_sync.sync.pipeline.orchestrator").info(
            "Sync run completed", extra={"sync_run_id": 12, "sync_kind": "full"}
        )
        for handler in logging.getLogger("exchange_sync").handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "exchange_sync.log").read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "Sync run completed"
        assert entry["sync_run_id"] == 12
        assert entry["sync_kind"] == "full"
        assert entry["app"] == "exchange-sync"
        assert entry["level"] == "INFO"

    def test_setup_is_idempotent(self, logging_app):
        setup_logging(logging_app)
        setup_logging(logging_app)

        installed = [h for h in logging_app.logger.handlers if getattr(h, "_exchange_sync_handler", False)]
        assert len(installed) == 1
        assert logging.getLogger("exchange_sync").propagate is False

    def test_disabled_handlers_fall_back_to_propagation(self, logging_app):
        logging_app.config.update(ENABLE_FILE_LOGGING=False)
        setup_logging(logging_app)

        assert logging.getLogger("exchange_sync").propagate is True

    def test_json_formatter_includes_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = logging.getLogger("test").makeRecord(
                "test", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
            )

        payload = json.loads(formatter.format(record))
        assert "ValueError: bad payload" in payload["exception"]
        assert "app" not in payload
