"""
Durable log of sync runs plus the status, statistics and listing queries.

Run rows are written only by the lifecycle methods (``start_run``,
``record_progress``, ``complete_run``, ``fail_run``, ``mark_stale_runs`` and
``prune_runs``); everything else here is read-only. Every write to a run is
conditional on it still being ``running``, so a run reaches a terminal status
once. ``start_run`` serializes runs per remote account: a second run is
refused while a non-stale one is still running.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from exchange_sync.models import Contact, Exchange, SyncKind, SyncRun, SyncRunStatus, Task, User, db
from exchange_sync.sync.errors import SyncAlreadyRunning

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-started_at"
DEFAULT_STALE_AFTER = timedelta(minutes=360)
DEFAULT_RETENTION = timedelta(days=30)
STALE_RUN_MESSAGE = "Sync run abandoned: no progress recorded before the stale cutoff."
RECENT_RUNS_LIMIT = 10
AVERAGE_DURATION_SAMPLE = 50

VALID_SORT_FIELDS = {
    "id": SyncRun.id,
    "kind": SyncRun.kind,
    "status": SyncRun.status,
    "started_at": SyncRun.started_at,
    "completed_at": SyncRun.completed_at,
    "records_processed": SyncRun.records_processed,
}

_account_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
_account_locks_guard = threading.Lock()


def _account_lock(account: str) -> threading.Lock:
    with _account_locks_guard:
        return _account_locks[account]


@dataclass(frozen=True)
class RunFilters:
    """Canonical set of filter options applied to sync run queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    statuses: tuple[SyncRunStatus, ...] = field(default_factory=tuple)
    kinds: tuple[SyncKind, ...] = field(default_factory=tuple)
    started_from: datetime | None = None
    started_to: datetime | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        statuses: Iterable[str] | None = None,
        kinds: Iterable[str] | None = None,
        started_from: str | datetime | None = None,
        started_to: str | datetime | None = None,
    ) -> "RunFilters":
        """
        Coerce mixed user input into a validated ``RunFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

        resolved_sort = sort or DEFAULT_SORT
        sort_key = resolved_sort.lstrip("-")
        if sort_key not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{sort_key}'.")

        resolved_statuses = tuple(_coerce_enum(SyncRunStatus, value, "status") for value in statuses or () if value)
        resolved_kinds = tuple(_coerce_enum(SyncKind, value, "kind") for value in kinds or () if value)

        resolved_started_from = _coerce_datetime(started_from)
        resolved_started_to = _coerce_datetime(started_to, end_of_day=True)
        if resolved_started_from and resolved_started_to and resolved_started_from > resolved_started_to:
            raise ValueError("started_from must be before started_to.")

        return cls(
            page=resolved_page,
            page_size=resolved_size,
            sort=resolved_sort,
            statuses=resolved_statuses,
            kinds=resolved_kinds,
            started_from=resolved_started_from,
            started_to=resolved_started_to,
        )


@dataclass(slots=True)
class RunSummary:
    """Summarized representation of a sync run."""

    id: int
    kind: str
    status: str
    account: str
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: int | None
    records_processed: int
    records_created: int
    records_updated: int
    error_message: str | None
    triggered_by: Mapping[str, Any] | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "account": self.account,
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
            "duration": self.duration_seconds,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "error_message": self.error_message,
            "triggered_by": dict(self.triggered_by) if self.triggered_by else None,
        }


@dataclass(slots=True)
class RunListResult:
    """Paginated result set for sync runs."""

    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(slots=True)
class RunStats:
    """Aggregate statistics over the run log."""

    runs_last_24_hours: int
    runs_last_7_days: int
    success_rate: int
    average_duration_seconds: int

    def to_dict(self) -> dict[str, int]:
        return {
            "syncs_last_24_hours": self.runs_last_24_hours,
            "syncs_last_7_days": self.runs_last_7_days,
            "success_rate": self.success_rate,
            "avg_duration": self.average_duration_seconds,
        }


class SyncRunStore:
    """Facade over the ``sync_runs`` table."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        now_fn=None,
    ) -> None:
        self.session: Session = session or db.session
        self.stale_after = stale_after
        self.now = now_fn or (lambda: datetime.now(timezone.utc))

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def start_run(
        self,
        kind: SyncKind | str,
        *,
        account: str = "default",
        triggered_by_user_id: int | None = None,
    ) -> SyncRun:
        """Create a running SyncRun, refusing when one is already in flight for ``account``."""

        with _account_lock(account):
            self.mark_stale_runs(account=account)
            active = self.session.execute(
                select(SyncRun)
                .where(SyncRun.account == account, SyncRun.status == SyncRunStatus.RUNNING)
                .order_by(SyncRun.started_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if active is not None:
                raise SyncAlreadyRunning(account, active.id)

            run = SyncRun(
                kind=SyncKind(kind),
                status=SyncRunStatus.RUNNING,
                account=account,
                started_at=self.now(),
                triggered_by_user_id=triggered_by_user_id,
            )
            self.session.add(run)
            self.session.commit()
            return run

    def complete_run(
        self,
        run_id: int,
        *,
        processed: int,
        created: int,
        updated: int,
        details: Mapping[str, Any],
    ) -> SyncRun:
        applied = self._finish_running(
            run_id,
            status=SyncRunStatus.SUCCESS,
            completed_at=self.now(),
            records_processed=processed,
            records_created=created,
            records_updated=updated,
            details=dict(details),
        )
        run = self.get_run(run_id)
        if not applied:
            logger.warning(
                "Sync run was already finished; completion not recorded",
                extra={"sync_run_id": run_id, "sync_run_status": _enum_value(run.status)},
            )
        return run

    def fail_run(self, run_id: int, *, error_message: str, details: Mapping[str, Any] | None = None) -> SyncRun:
        # Discard anything half-written by the failed step before recording the failure.
        self.session.rollback()
        applied = self._finish_running(
            run_id,
            status=SyncRunStatus.ERROR,
            completed_at=self.now(),
            error_message=error_message,
            details=dict(details or {"error": error_message}),
        )
        run = self.get_run(run_id)
        if not applied:
            logger.warning(
                "Sync run was already finished; failure not recorded",
                extra={"sync_run_id": run_id, "sync_run_status": _enum_value(run.status), "error": error_message},
            )
        return run

    def record_progress(self, run_id: int, *, details: Mapping[str, Any] | None = None) -> bool:
        """
        Stamp the run's heartbeat, and its partial per-kind details when given.

        Returns False when the run is no longer running (finished or swept as
        stale), so the caller can stop.
        """

        values: dict[str, Any] = {"heartbeat_at": self.now()}
        if details is not None:
            values["details"] = dict(details)
        return self._update_running(run_id, values)

    def mark_stale_runs(self, *, account: str | None = None) -> int:
        """
        Mark running runs with no progress for ``stale_after`` as abandoned.

        Progress is the last heartbeat, or the start time for a run that never
        reported one. Returns how many runs were marked.
        """

        cutoff = self.now() - self.stale_after
        last_seen = func.coalesce(SyncRun.heartbeat_at, SyncRun.started_at)
        stmt = select(SyncRun.id, SyncRun.details).where(SyncRun.status == SyncRunStatus.RUNNING, last_seen < cutoff)
        if account is not None:
            stmt = stmt.where(SyncRun.account == account)
        candidates = self.session.execute(stmt).all()

        marked = 0
        for run_id, details in candidates:
            if self._finish_running(
                run_id,
                last_seen < cutoff,
                status=SyncRunStatus.ERROR,
                completed_at=self.now(),
                error_message=STALE_RUN_MESSAGE,
                details={**(details or {}), "error": STALE_RUN_MESSAGE, "stale": True},
            ):
                marked += 1
        return marked

    def prune_runs(self, *, older_than: timedelta = DEFAULT_RETENTION) -> int:
        """Delete finished runs that started before ``older_than`` ago. Running rows are kept."""

        cutoff = self.now() - older_than
        result = self.session.execute(
            delete(SyncRun)
            .where(SyncRun.status != SyncRunStatus.RUNNING, SyncRun.started_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return int(result.rowcount or 0)

    def _finish_running(self, run_id: int, *criteria, **values: Any) -> bool:
        return self._update_running(run_id, values, *criteria)

    def _update_running(self, run_id: int, values: Mapping[str, Any], *criteria) -> bool:
        # A run leaves RUNNING exactly once: every write is conditional on it still running.
        result = self.session.execute(
            update(SyncRun)
            .where(SyncRun.id == run_id, SyncRun.status == SyncRunStatus.RUNNING, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    def get_run(self, run_id: int) -> SyncRun:
        run = self.session.get(SyncRun, run_id)
        if run is None:
            raise NoResultFound(f"Sync run {run_id} not found.")
        return run

    def get_run_summary(self, run_id: int) -> RunSummary:
        return self.summarize(self.get_run(run_id))

    def list_runs(self, filters: RunFilters) -> RunListResult:
        query = self._apply_filters(self.session.query(SyncRun), filters)

        total = query.count()
        if total == 0:
            return RunListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = (
            query.order_by(_resolve_sort_expression(filters.sort), SyncRun.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return RunListResult(
            items=[self.summarize(run) for run in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
        )

    def get_sync_status(self) -> dict[str, Any]:
        recent = (
            self.session.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(RECENT_RUNS_LIMIT)
            )
            .scalars()
            .all()
        )
        last_full = self.session.execute(
            select(SyncRun)
            .where(SyncRun.kind == SyncKind.FULL, SyncRun.status == SyncRunStatus.SUCCESS)
            .order_by(SyncRun.completed_at.desc())
            .limit(1)
        ).scalar_one_or_none()

        return {
            "recent_syncs": [self.summarize(run).to_dict() for run in recent],
            "last_full_sync": (
                {
                    "id": last_full.id,
                    "completed_at": _isoformat(last_full.completed_at),
                    "records_processed": last_full.records_processed,
                    "duration": _rounded(last_full.duration_seconds),
                }
                if last_full is not None
                else None
            ),
            "entity_counts": {
                "contacts": self._count(Contact),
                "exchanges": self._count(Exchange),
                "tasks": self._count(Task),
            },
            "statistics": self.get_statistics().to_dict(),
        }

    def get_statistics(self) -> RunStats:
        now = self.now()
        last_24h = self._count(SyncRun, SyncRun.started_at >= now - timedelta(hours=24))
        last_7d = self._count(SyncRun, SyncRun.started_at >= now - timedelta(days=7))

        total = self._count(SyncRun)
        successful = self._count(SyncRun, SyncRun.status == SyncRunStatus.SUCCESS)
        success_rate = round(successful / total * 100) if total else 0

        samples = (
            self.session.execute(
                select(SyncRun)
                .where(SyncRun.status == SyncRunStatus.SUCCESS, SyncRun.completed_at.is_not(None))
                .order_by(SyncRun.completed_at.desc())
                .limit(AVERAGE_DURATION_SAMPLE)
            )
            .scalars()
            .all()
        )
        durations = [run.duration_seconds for run in samples if run.duration_seconds is not None]
        average = round(sum(durations) / len(durations)) if durations else 0

        return RunStats(
            runs_last_24_hours=last_24h,
            runs_last_7_days=last_7d,
            success_rate=success_rate,
            average_duration_seconds=average,
        )

    def summarize(self, run: SyncRun) -> RunSummary:
        triggered_by = None
        if run.triggered_by_user_id:
            user: User | None = self.session.get(User, run.triggered_by_user_id)
            if user:
                triggered_by = {"id": user.id, "name": user.display_name, "email": user.email}

        return RunSummary(
            id=run.id,
            kind=_enum_value(run.kind),
            status=_enum_value(run.status),
            account=run.account,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=_rounded(run.duration_seconds),
            records_processed=run.records_processed or 0,
            records_created=run.records_created or 0,
            records_updated=run.records_updated or 0,
            error_message=run.error_message,
            triggered_by=triggered_by,
        )

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _count(self, model, *predicates) -> int:
        stmt = select(func.count()).select_from(model)
        if predicates:
            stmt = stmt.where(*predicates)
        return int(self.session.execute(stmt).scalar_one())

    def _apply_filters(self, query, filters: RunFilters):
        predicates = []
        if filters.statuses:
            predicates.append(SyncRun.status.in_(filters.statuses))
        if filters.kinds:
            predicates.append(SyncRun.kind.in_(filters.kinds))
        if filters.started_from:
            predicates.append(SyncRun.started_at >= filters.started_from)
        if filters.started_to:
            predicates.append(SyncRun.started_at <= filters.started_to)
        if predicates:
            query = query.filter(and_(*predicates))
        return query


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    normalized = str(value).strip().lower()
    try:
        return enum_cls(normalized)
    except ValueError:
        raise ValueError(f"Unsupported {label} filter '{value}'.") from None


def _coerce_datetime(candidate: str | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo else candidate.replace(tzinfo=timezone.utc)
    text = str(candidate).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse datetime value '{candidate}'. Expected ISO-like formats.")


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    sort_key = sort.lstrip("-")
    expression = VALID_SORT_FIELDS.get(sort_key)
    if expression is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return expression.desc() if descending else expression.asc()


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _rounded(seconds: float | None) -> int | None:
    return round(seconds) if seconds is not None else None


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
