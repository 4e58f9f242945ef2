"""
Sync orchestration: open a run, sync each kind in order, close the run.

Kinds run sequentially (contacts, then matters, then tasks) so matters can
resolve their client contact and tasks their exchange. A failure after some
kinds completed keeps their rows; only the run is marked as failed.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Mapping, Sequence

from exchange_sync.models import SyncKind, SyncRun
from exchange_sync.sync.adapters.practicepanther.client import DEFAULT_BASE_URL, RemoteClient
from exchange_sync.sync.adapters.practicepanther.credentials import build_credential_provider
from exchange_sync.sync.adapters.practicepanther.paginator import DEFAULT_PAGE_SIZE, Paginator, chunk_records
from exchange_sync.sync.cancellation import CancellationToken
from exchange_sync.sync.errors import RunFatalError
from exchange_sync.sync.metrics import record_run
from exchange_sync.sync.pipeline.run_service import SyncRunStore
from exchange_sync.sync.pipeline.store import SqlAlchemyStore
from exchange_sync.sync.pipeline.upserter import BatchResult, BatchUpserter

FULL_SYNC_ORDER: Sequence[SyncKind] = (SyncKind.CONTACTS, SyncKind.MATTERS, SyncKind.TASKS)

DEFAULT_BATCH_SIZES: Mapping[SyncKind, int] = {
    SyncKind.CONTACTS: 50,
    SyncKind.MATTERS: 25,
    SyncKind.TASKS: 100,
}

INCLUDES: Mapping[SyncKind, str] = {
    SyncKind.MATTERS: "client,assigned_users",
    SyncKind.TASKS: "matter,assigned_to",
}

INTERRUPTED_MESSAGE = "Sync cancelled: interrupted"


@dataclass(frozen=True)
class SyncSettings:
    account: str = "default"
    page_size: int = DEFAULT_PAGE_SIZE
    batch_sizes: Mapping[SyncKind, int] = field(default_factory=lambda: dict(DEFAULT_BATCH_SIZES))

    def batch_size(self, kind: SyncKind) -> int:
        return max(1, int(self.batch_sizes.get(kind, DEFAULT_BATCH_SIZES[kind])))


class SyncOrchestrator:
    """Drive a full or single-kind sync and record it in the run log."""

    def __init__(
        self,
        *,
        paginator: Paginator,
        upserter: BatchUpserter,
        run_store: SyncRunStore,
        settings: SyncSettings | None = None,
        cancel_token: CancellationToken | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.paginator = paginator
        self.upserter = upserter
        self.run_store = run_store
        self.settings = settings or SyncSettings()
        self.cancel_token = cancel_token or CancellationToken()
        self.paginator.cancel_token = self.cancel_token
        self.upserter.cancel_token = self.cancel_token
        self.logger = logger or logging.getLogger(__name__)

    def run_full(self, *, triggered_by_user_id: int | None = None) -> SyncRun:
        return self._execute(SyncKind.FULL, FULL_SYNC_ORDER, triggered_by_user_id)

    def run_kind(self, kind: SyncKind | str, *, triggered_by_user_id: int | None = None) -> SyncRun:
        kind = SyncKind(kind)
        if kind is SyncKind.FULL:
            return self.run_full(triggered_by_user_id=triggered_by_user_id)
        return self._execute(kind, (kind,), triggered_by_user_id)

    def cancel(self, reason: str = "cancelled by operator") -> None:
        self.cancel_token.cancel(reason)

    # Internal helpers -----------------------------------------------------------

    def _execute(self, run_kind: SyncKind, kinds: Sequence[SyncKind], triggered_by_user_id: int | None) -> SyncRun:
        run = self.run_store.start_run(
            run_kind, account=self.settings.account, triggered_by_user_id=triggered_by_user_id
        )
        run_id = run.id
        log_extra = {"sync_run_id": run_id, "sync_kind": run_kind.value, "sync_account": self.settings.account}
        self.logger.info("Sync run started", extra=log_extra)

        details: Dict[str, Any] = {}
        totals = BatchResult()
        try:
            for kind in kinds:
                totals.merge(self._sync_kind(kind, run_id, details))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._record_failure(run_kind, run_id, message, details, log_extra)
            if isinstance(exc, RunFatalError):
                raise
            raise RunFatalError(message) from exc
        except BaseException:
            # KeyboardInterrupt or SystemExit: close the run, then let the interrupt through.
            self._record_failure(run_kind, run_id, INTERRUPTED_MESSAGE, details, log_extra)
            raise

        completed = self.run_store.complete_run(
            run_id,
            processed=totals.processed,
            created=totals.created,
            updated=totals.updated,
            details=details,
        )
        record_run(kind=run_kind.value, status="success", duration_seconds=completed.duration_seconds)
        self.logger.info(
            "Sync run completed",
            extra={
                **log_extra,
                "sync_processed": totals.processed,
                "sync_created": totals.created,
                "sync_updated": totals.updated,
                "sync_errors": len(totals.errors),
            },
        )
        return completed

    def _record_failure(
        self,
        run_kind: SyncKind,
        run_id: int,
        message: str,
        details: Mapping[str, Any],
        log_extra: Mapping[str, Any],
    ) -> None:
        failed = self.run_store.fail_run(
            run_id,
            error_message=message,
            details={**details, "error": message, "traceback": traceback.format_exc()},
        )
        record_run(kind=run_kind.value, status="error", duration_seconds=failed.duration_seconds)
        self.logger.error("Sync run failed", extra={**log_extra, "error": message})

    def _heartbeat(self, run_id: int, details: Mapping[str, Any] | None = None) -> None:
        if not self.run_store.record_progress(run_id, details=details):
            raise RunFatalError(f"Sync run {run_id} was closed by another process; stopping.")

    def _sync_kind(self, kind: SyncKind, run_id: int, details: Dict[str, Any]) -> BatchResult:
        """Fetch and apply one kind, keeping ``details[kind]`` current after every chunk."""

        records = self.paginator.fetch_all(
            kind.value,
            page_size=self.settings.page_size,
            include=INCLUDES.get(kind),
            on_page=lambda _page: self._heartbeat(run_id),
        )
        self.logger.info(
            "Fetched remote records",
            extra={"sync_run_id": run_id, "sync_kind": kind.value, "sync_fetched": len(records)},
        )
        result = BatchResult()
        details[kind.value] = result.to_dict()
        for chunk in chunk_records(records, self.settings.batch_size(kind)):
            result.merge(self.upserter.apply(kind, chunk))
            details[kind.value] = result.to_dict()
            self._heartbeat(run_id, details)
        return result


def create_orchestrator(
    config: Mapping[str, Any],
    *,
    http_session=None,
    credentials=None,
    sleep_fn=None,
    cancel_token: CancellationToken | None = None,
) -> SyncOrchestrator:
    """Wire client, paginator, store and run log from Flask config values."""

    token = cancel_token or CancellationToken()
    client = RemoteClient(
        credentials=credentials or build_credential_provider(config),
        base_url=config.get("PRACTICE_PANTHER_BASE_URL") or DEFAULT_BASE_URL,
        session=http_session,
        timeout=float(config.get("SYNC_REQUEST_TIMEOUT", 30)),
    )
    paginator_kwargs: Dict[str, Any] = {
        "max_rate_limit_retries": int(config.get("SYNC_MAX_RATE_LIMIT_RETRIES", 5)),
        "cancel_token": token,
    }
    if sleep_fn is not None:
        paginator_kwargs["sleep_fn"] = sleep_fn
    paginator = Paginator(client, **paginator_kwargs)
    upserter = BatchUpserter(
        SqlAlchemyStore(),
        max_workers=config.get("SYNC_UPSERT_MAX_WORKERS"),
        cancel_token=token,
    )
    run_store = SyncRunStore(stale_after=timedelta(minutes=int(config.get("SYNC_STALE_RUN_MINUTES", 360))))
    settings = SyncSettings(
        account=config.get("PRACTICE_PANTHER_ACCOUNT") or "default",
        page_size=int(config.get("SYNC_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
        batch_sizes={
            SyncKind.CONTACTS: int(config.get("SYNC_BATCH_SIZE_CONTACTS", DEFAULT_BATCH_SIZES[SyncKind.CONTACTS])),
            SyncKind.MATTERS: int(config.get("SYNC_BATCH_SIZE_MATTERS", DEFAULT_BATCH_SIZES[SyncKind.MATTERS])),
            SyncKind.TASKS: int(config.get("SYNC_BATCH_SIZE_TASKS", DEFAULT_BATCH_SIZES[SyncKind.TASKS])),
        },
    )
    return SyncOrchestrator(
        paginator=paginator,
        upserter=upserter,
        run_store=run_store,
        settings=settings,
        cancel_token=token,
    )
