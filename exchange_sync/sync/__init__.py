"""
PracticePanther sync feature package.

Provides conditional blueprint and CLI registration along with adapter
readiness checks while remaining lightweight when sync is disabled.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from flask import Flask

from exchange_sync.utils.sync_flags import is_sync_enabled, is_worker_enabled

from .adapters.practicepanther import check_practicepanther_adapter_readiness
from .celery_app import SYNC_EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import get_disabled_sync_group, sync_cli
from .metrics import record_adapter_status
from .pipeline.run_service import RunFilters, SyncRunStore
from .views import sync_blueprint

__all__ = [
    "init_sync",
    "SYNC_EXTENSION_KEY",
    "get_celery_app",
    "SyncRunStore",
    "RunFilters",
    "get_adapter_readiness",
    "refresh_adapter_readiness",
]


def _ensure_extension_state(app: Flask) -> dict:
    state = app.extensions.setdefault(
        SYNC_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
            "adapter_readiness": {},
        },
    )
    return state


def _compute_adapter_readiness(app: Flask, *, require_auth_ping: bool = False, client=None) -> Dict[str, Any]:
    readiness = check_practicepanther_adapter_readiness(
        app.config,
        require_auth_ping=require_auth_ping,
        client=client,
    )
    record_adapter_status(readiness.status == "ready")
    return {"name": "practicepanther", "title": "PracticePanther", **readiness.as_dict()}


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = sync_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(sync_cli)
    else:
        app.cli.add_command(get_disabled_sync_group())


def init_sync(app: Flask) -> None:
    """
    Conditionally mount the sync blueprint and CLI based on configuration.

    Records sync state inside ``app.extensions['sync']`` for reuse by the CLI,
    the views and the Celery tasks.
    """
    enabled = is_sync_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": is_worker_enabled(app)})

    if not enabled:
        record_adapter_status(False)
        state["adapter_readiness"] = {}
        _set_cli(app, enabled=False)
        app.logger.info("Sync disabled via SYNC_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)

    readiness = _compute_adapter_readiness(app)
    state["adapter_readiness"] = readiness
    if readiness.get("status") != "ready":
        messages = list(readiness.get("messages") or ())
        message_str = "; ".join(messages) if messages else "No additional context provided."
        app.logger.warning(
            "PracticePanther adapter not ready (status=%s). %s",
            readiness.get("status"),
            message_str,
            extra={
                "sync_adapter_status": readiness.get("status"),
                "sync_adapter_messages": messages,
                "sync_adapter_missing_env": readiness.get("missing_env_vars"),
            },
        )

    if sync_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(sync_blueprint)
    elif sync_blueprint.name not in app.blueprints:
        app.logger.warning("Sync blueprint registration skipped because the app has already handled its first request.")
    _set_cli(app, enabled=True)

    app.logger.info(
        "Sync enabled (credentials=%s, worker=%s)",
        readiness.get("credential_source"),
        state["worker_enabled"],
    )


def get_adapter_readiness(app: Flask) -> Mapping[str, Any]:
    """
    Return cached adapter readiness information for the sync extension.
    """
    state = _ensure_extension_state(app)
    return dict(state.get("adapter_readiness") or {})


def refresh_adapter_readiness(app: Flask, *, require_auth_ping: bool = False, client=None) -> Mapping[str, Any]:
    """
    Recompute adapter readiness and persist the result on the sync extension state.
    """
    state = _ensure_extension_state(app)
    readiness = _compute_adapter_readiness(app, require_auth_ping=require_auth_ping, client=client)
    state["adapter_readiness"] = readiness
    return dict(readiness)
