"""
Celery configuration helpers for the sync worker.

Defaults to the SQLite transport so local development needs no Redis. The
beat schedule runs a daily full sync, a periodic stale-run sweep and a
daily prune of old run rows.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from celery.schedules import crontab
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "sync"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
SYNC_EXTENSION_KEY = "sync"


def _configure_quiet_loggers(app: Flask) -> None:
    """Keep SQLAlchemy, urllib3 and Celery worker state logs out of task output."""

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)


def _normalize_sqlite_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    if configured:
        sqlite_path = Path(configured)
        if not sqlite_path.is_absolute():
            sqlite_path = Path(app.instance_path) / sqlite_path
    else:
        sqlite_path = Path(app.instance_path) / DEFAULT_SQLITE_FILENAME

    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite_path


def _determine_connection_urls(app: Flask) -> tuple[str, str]:
    """
    Resolve broker/result backend URLs, defaulting to SQLite transports.

    Returns:
        tuple[str, str]: (broker_url, result_backend)
    """
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")

    if broker_url and result_backend:
        return broker_url, result_backend

    normalized = _normalize_sqlite_path(app).as_posix()
    return broker_url or f"sqla+sqlite:///{normalized}", result_backend or f"db+sqlite:///{normalized}"


def build_beat_schedule(app: Flask) -> dict[str, dict[str, Any]]:
    return {
        "sync-full-daily": {
            "task": "sync.full",
            "schedule": crontab(
                hour=int(app.config.get("SYNC_FULL_SCHEDULE_HOUR", 2)),
                minute=int(app.config.get("SYNC_FULL_SCHEDULE_MINUTE", 0)),
            ),
            "options": {"queue": DEFAULT_QUEUE_NAME},
        },
        "sync-mark-stale-runs": {
            "task": "sync.mark_stale_runs",
            "schedule": crontab(minute="*/30"),
            "options": {"queue": DEFAULT_QUEUE_NAME},
        },
        "sync-prune-runs": {
            "task": "sync.prune_runs",
            "schedule": crontab(hour=3, minute=30),
            "options": {"queue": DEFAULT_QUEUE_NAME},
        },
    }


def _extra_conf(app: Flask) -> Mapping[str, Any] | None:
    """``CELERY_CONFIG`` overrides, given as a mapping or a JSON object string."""

    raw: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
        return None


def build_celery_conf(app: Flask) -> dict[str, Any]:
    """
    Celery settings for the sync worker.

    One queue, late acks and a prefetch of one: a full sync holds the worker
    for minutes, so tasks should not pile up behind it on a single process.
    """
    return {
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_default_exchange": DEFAULT_QUEUE_NAME,
        "task_default_routing_key": DEFAULT_QUEUE_NAME,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "task_track_started": True,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        # Sync runs have no wall-clock bound.
        "task_time_limit": None,
        "task_soft_time_limit": None,
        "worker_task_log_format": "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
        "worker_hijack_root_logger": False,
        "beat_schedule": build_beat_schedule(app),
        "timezone": "UTC",
    }


def create_celery_app(app: Flask) -> Celery:
    """
    Create a Celery instance bound to ``app`` whose tasks run inside its app context.

    Swap to Redis/Postgres by setting ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND``.
    """
    broker_url, result_backend = _determine_connection_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("exchange_sync.sync.tasks",),
    )
    celery_app.conf.update(build_celery_conf(app))

    extra_conf = _extra_conf(app)
    if extra_conf:
        celery_app.conf.update(extra_conf)
    app.logger.info(
        "Sync Celery configuration resolved",
        extra={
            "sync_celery_broker_url": broker_url,
            "sync_celery_result_backend": result_backend,
            "sync_celery_overrides": sorted(extra_conf or ()),
        },
    )
    _configure_quiet_loggers(app)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return (and cache) the Celery instance inside the sync extension state."""

    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    state: dict[str, Any] | None = app.extensions.get(SYNC_EXTENSION_KEY)  # type: ignore[arg-type]
    if not state:
        return None
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None and state.get("enabled"):
        celery_app = ensure_celery_app(app, state)
    return celery_app
