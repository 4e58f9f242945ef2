"""
Sync Celery tasks.

Each task builds an orchestrator from the bound Flask app's config, so the
worker and the inline CLI path run exactly the same code.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from exchange_sync.models import SyncKind, SyncRun, db
from exchange_sync.sync.cancellation import CancellationToken
from exchange_sync.sync.errors import SyncAlreadyRunning
from exchange_sync.sync.pipeline.orchestrator import create_orchestrator
from exchange_sync.sync.pipeline.run_service import SyncRunStore


def run_result_payload(run: SyncRun) -> dict[str, Any]:
    payload = SyncRunStore().summarize(run).to_dict()
    payload["details"] = {
        key: value for key, value in (run.details or {}).items() if key != "traceback"
    }
    return payload


def execute_sync(
    kind: SyncKind | str,
    *,
    triggered_by_user_id: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict[str, Any]:
    """Run a sync in the current app context and return the run summary."""

    orchestrator = create_orchestrator(current_app.config, cancel_token=cancel_token)
    run = orchestrator.run_kind(kind, triggered_by_user_id=triggered_by_user_id)
    return run_result_payload(run)


@shared_task(name="sync.healthcheck", bind=True)
def sync_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask sync worker ping``."""

    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="sync.full", bind=True)
def sync_full(self, *, triggered_by_user_id: int | None = None) -> dict[str, Any]:
    return _run_task(SyncKind.FULL, triggered_by_user_id)


@shared_task(name="sync.kind", bind=True)
def sync_kind(self, *, kind: str, triggered_by_user_id: int | None = None) -> dict[str, Any]:
    return _run_task(SyncKind(kind), triggered_by_user_id)


@shared_task(name="sync.mark_stale_runs", bind=True)
def mark_stale_runs(self) -> dict[str, Any]:
    minutes = int(current_app.config.get("SYNC_STALE_RUN_MINUTES", 360))
    marked = SyncRunStore(stale_after=timedelta(minutes=minutes)).mark_stale_runs()
    if marked:
        current_app.logger.warning("Marked stale sync runs", extra={"sync_stale_runs": marked})
    return {"marked": marked}


@shared_task(name="sync.prune_runs", bind=True)
def prune_runs(self) -> dict[str, Any]:
    days = int(current_app.config.get("SYNC_RUN_RETENTION_DAYS", 30))
    deleted = SyncRunStore().prune_runs(older_than=timedelta(days=days))
    current_app.logger.info("Pruned old sync runs", extra={"sync_pruned_runs": deleted, "sync_retention_days": days})
    return {"deleted": deleted}


def _run_task(kind: SyncKind, triggered_by_user_id: int | None) -> dict[str, Any]:
    try:
        return execute_sync(kind, triggered_by_user_id=triggered_by_user_id)
    except SyncAlreadyRunning as exc:
        # Overlapping schedule or manual trigger; not a worker failure.
        current_app.logger.warning(
            "Sync skipped; another run is in progress",
            extra={"sync_kind": kind.value, "sync_active_run_id": exc.run_id, "sync_account": exc.account},
        )
        return {"status": "skipped", "reason": str(exc), "active_run_id": exc.run_id}
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Sync task failed",
            extra={"sync_kind": kind.value, "sync_error": str(exc)},
        )
        raise
