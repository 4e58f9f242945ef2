"""Prometheus metrics helpers for the sync engine."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_adapter_enabled_gauge = Gauge(
    "sync_practicepanther_adapter_enabled",
    "Whether the PracticePanther sync adapter is ready (1) or not (0).",
)
_runs_counter = Counter(
    "sync_runs_total",
    "Sync runs by kind and terminal status.",
    ["kind", "status"],
)
_run_duration = Histogram(
    "sync_run_duration_seconds",
    "Wall-clock duration of sync runs in seconds.",
    ["kind"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
)
_records_counter = Counter(
    "sync_records_total",
    "Per-record upsert outcomes by entity kind.",
    ["kind", "outcome"],
)
_rate_limited_counter = Counter(
    "sync_rate_limited_total",
    "HTTP 429 responses received from the remote API.",
    ["collection"],
)
_page_fetch_duration = Histogram(
    "sync_page_fetch_seconds",
    "Duration of a single remote page fetch in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)


def record_adapter_status(ready: bool) -> None:
    """Set the adapter readiness gauge."""

    _adapter_enabled_gauge.set(1 if ready else 0)


def record_run(*, kind: str, status: Literal["success", "error"], duration_seconds: float | None) -> None:
    """Capture the terminal status of a sync run."""

    _runs_counter.labels(kind=kind, status=status).inc()
    if duration_seconds is not None:
        _run_duration.labels(kind=kind).observe(duration_seconds)


def record_outcomes(*, kind: str, created: int, updated: int, errors: int) -> None:
    """Increment per-record outcome counters for a batch."""

    for outcome, count in (("created", created), ("updated", updated), ("error", errors)):
        if count:
            _records_counter.labels(kind=kind, outcome=outcome).inc(count)


def record_rate_limited(collection: str) -> None:
    _rate_limited_counter.labels(collection=collection).inc()


def record_page_fetch(duration_seconds: float) -> None:
    _page_fetch_duration.observe(duration_seconds)
