"""
``flask sync`` command group.

Runs are queued on the Celery ``sync`` queue by default; ``--inline`` runs the
orchestrator in the CLI process, where the first SIGINT or SIGTERM cancels the
run cooperatively.
"""

from __future__ import annotations

import json
import signal
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo
from sqlalchemy.exc import NoResultFound

from exchange_sync.models import SyncKind, SyncRunStatus
from exchange_sync.sync.adapters.practicepanther.client import DEFAULT_BASE_URL, RemoteClient
from exchange_sync.sync.adapters.practicepanther.credentials import build_credential_provider
from exchange_sync.sync.cancellation import CancellationToken
from exchange_sync.sync.celery_app import DEFAULT_QUEUE_NAME, SYNC_EXTENSION_KEY, ensure_celery_app
from exchange_sync.sync.errors import SyncAlreadyRunning, SyncError
from exchange_sync.sync.pipeline.run_service import RunFilters, SyncRunStore
from exchange_sync.sync.tasks import execute_sync
from exchange_sync.utils.sync_flags import is_sync_enabled, is_worker_enabled

KIND_CHOICES = [kind.value for kind in SyncKind]
STATUS_CHOICES = [status.value for status in SyncRunStatus]


@click.group(name="sync", invoke_without_command=True)
@click.pass_context
def sync_cli(ctx):
    """
    PracticePanther sync commands.

    Prints adapter readiness when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_sync_enabled(app):
        raise click.ClickException("Sync is disabled via SYNC_ENABLED=false. Enable it to run sync CLI commands.")
    if ctx.invoked_subcommand is None:
        readiness = app.extensions.get(SYNC_EXTENSION_KEY, {}).get("adapter_readiness", {})
        click.echo(f"PracticePanther adapter: {readiness.get('status', 'unknown')}")
        for message in readiness.get("messages", ()):
            click.echo(f"  - {message}")


def get_disabled_sync_group() -> click.Group:
    """Return a minimal command group that informs the operator sync is disabled."""

    @click.group(name="sync", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Sync commands are unavailable because SYNC_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    state = app.extensions.get(SYNC_EXTENSION_KEY)
    if not state or not state.get("enabled"):
        raise click.ClickException(
            "Sync Celery app is unavailable. Ensure SYNC_ENABLED=true and init_sync runs before worker commands."
        )
    return ensure_celery_app(app, state)


def _stale_after(app) -> timedelta:
    return timedelta(minutes=int(app.config.get("SYNC_STALE_RUN_MINUTES", 360)))


@contextmanager
def _cancel_on_signals(token: CancellationToken, signums=(signal.SIGINT, signal.SIGTERM)) -> Iterator[None]:
    """
    Turn the first SIGINT/SIGTERM into a cancel request on ``token``.

    The previous handler is restored for that signal right away, so a second
    Ctrl-C interrupts as usual. Signal handlers only exist on the main thread.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {signum: signal.getsignal(signum) or signal.SIG_DFL for signum in signums}

    def request_cancel(signum, frame):
        name = signal.Signals(signum).name
        token.cancel(f"received {name}")
        signal.signal(signum, previous[signum])
        click.echo(f"{name} received; cancelling sync run after the current step.", err=True)

    for signum in signums:
        signal.signal(signum, request_cancel)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _format_run_line(summary) -> str:
    duration = f"{summary.duration_seconds}s" if summary.duration_seconds is not None else "-"
    return (
        f"#{summary.id} {summary.kind:<8} {summary.status:<7} started={summary.started_at} "
        f"duration={duration} processed={summary.records_processed} "
        f"created={summary.records_created} updated={summary.records_updated}"
    )


@sync_cli.command("run")
@click.option("--kind", type=click.Choice(KIND_CHOICES), default=SyncKind.FULL.value, show_default=True)
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option("--user-id", type=int, help="Local user id recorded as the run trigger.")
@click.option(
    "--summary-json",
    is_flag=True,
    help="Emit a machine-readable summary payload after completion (inline runs only).",
)
@click.pass_context
def sync_run(ctx, kind: str, inline: bool, user_id: Optional[int], summary_json: bool):
    """Start a full or single-kind sync."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    if not inline:
        celery_app = _resolve_celery(app)
        if kind == SyncKind.FULL.value:
            task_name, kwargs = "sync.full", {"triggered_by_user_id": user_id}
        else:
            task_name, kwargs = "sync.kind", {"kind": kind, "triggered_by_user_id": user_id}
        try:
            async_result = celery_app.send_task(task_name, kwargs=kwargs)
        except Exception as exc:  # pragma: no cover - broker failures
            raise click.ClickException(f"Failed to enqueue {kind} sync: {exc}") from exc

        app.logger.info(
            "Sync run queued via CLI",
            extra={"sync_kind": kind, "sync_task_id": async_result.id, "sync_triggered_by": user_id},
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "kind": kind}))
        return

    cancel_token = CancellationToken()
    try:
        with _cancel_on_signals(cancel_token):
            payload = execute_sync(kind, triggered_by_user_id=user_id, cancel_token=cancel_token)
    except SyncAlreadyRunning as exc:
        raise click.ClickException(str(exc)) from exc
    except SyncError as exc:
        raise click.ClickException(f"Sync failed: {exc}") from exc

    click.echo(
        f"Sync run {payload['id']} ({payload['kind']}) {payload['status']}: "
        f"processed={payload['records_processed']} created={payload['records_created']} "
        f"updated={payload['records_updated']}"
    )
    for kind_name, result in payload.get("details", {}).items():
        if isinstance(result, dict) and result.get("errors"):
            click.echo(f"  {kind_name}: {len(result['errors'])} record error(s)")
    if summary_json:
        click.echo(json.dumps(payload, indent=2, sort_keys=True))


@sync_cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Emit the status payload as JSON.")
@click.pass_context
def sync_status(ctx, as_json: bool):
    """Show recent runs, entity counts and statistics."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    status = SyncRunStore(stale_after=_stale_after(app)).get_sync_status()
    if as_json:
        click.echo(json.dumps(status, indent=2, sort_keys=True))
        return

    counts = status["entity_counts"]
    stats = status["statistics"]
    click.echo(
        f"Entities: contacts={counts['contacts']} exchanges={counts['exchanges']} tasks={counts['tasks']}"
    )
    click.echo(
        f"Runs: last 24h={stats['syncs_last_24_hours']} last 7d={stats['syncs_last_7_days']} "
        f"success rate={stats['success_rate']}% avg duration={stats['avg_duration']}s"
    )
    last_full = status["last_full_sync"]
    click.echo(f"Last full sync: {last_full['completed_at'] if last_full else 'never'}")
    for run in status["recent_syncs"]:
        click.echo(f"  #{run['id']} {run['kind']} {run['status']} {run['started_at']}")


@sync_cli.command("runs")
@click.option("--status", "statuses", multiple=True, type=click.Choice(STATUS_CHOICES))
@click.option("--kind", "kinds", multiple=True, type=click.Choice(KIND_CHOICES))
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=25, show_default=True, type=int)
@click.pass_context
def sync_runs(ctx, statuses, kinds, page: int, page_size: int):
    """List sync runs, newest first."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    try:
        filters = RunFilters.coerce(page=page, page_size=page_size, statuses=statuses, kinds=kinds)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    result = SyncRunStore(stale_after=_stale_after(app)).list_runs(filters)
    if not result.items:
        click.echo("No sync runs found.")
        return
    for summary in result.items:
        click.echo(_format_run_line(summary))
    click.echo(f"Page {result.page}/{result.total_pages} ({result.total} runs)")


@sync_cli.command("show")
@click.argument("run_id", type=int)
@click.pass_context
def sync_show(ctx, run_id: int):
    """Print one run with its per-kind details."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    store = SyncRunStore(stale_after=_stale_after(app))
    try:
        run = store.get_run(run_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    payload = store.summarize(run).to_dict()
    payload["details"] = run.details or {}
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def _build_client(app):
    try:
        credentials = build_credential_provider(app.config)
    except SyncError as exc:
        raise click.ClickException(str(exc)) from exc
    return RemoteClient(
        credentials=credentials,
        base_url=app.config.get("PRACTICE_PANTHER_BASE_URL") or DEFAULT_BASE_URL,
        timeout=float(app.config.get("SYNC_REQUEST_TIMEOUT", 30)),
    )


@sync_cli.command("test-connection")
@click.pass_context
def sync_test_connection(ctx):
    """Call the contacts endpoint once and report latency and rate-limit headers."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    result = _build_client(app).test_connection()
    click.echo(json.dumps(result, indent=2, sort_keys=True))
    if not result.get("success"):
        raise click.ClickException("PracticePanther connection test failed.")


@sync_cli.command("health")
@click.pass_context
def sync_health(ctx):
    """Ping the PracticePanther API and report its health headers."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    result = _build_client(app).health_check()
    click.echo(json.dumps(result, indent=2, sort_keys=True))
    if result.get("status") != "healthy":
        raise click.ClickException("PracticePanther API is unhealthy.")


@sync_cli.command("mark-stale")
@click.pass_context
def sync_mark_stale(ctx):
    """Mark abandoned running runs as errored."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    marked = SyncRunStore(stale_after=_stale_after(app)).mark_stale_runs()
    click.echo(f"Marked {marked} stale sync run(s).")


@sync_cli.command("prune")
@click.option("--days", type=click.IntRange(min=1), help="Retention window; defaults to SYNC_RUN_RETENTION_DAYS.")
@click.pass_context
def sync_prune(ctx, days: Optional[int]):
    """Delete finished sync runs older than the retention window."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    retention_days = days or int(app.config.get("SYNC_RUN_RETENTION_DAYS", 30))
    deleted = SyncRunStore().prune_runs(older_than=timedelta(days=retention_days))
    click.echo(f"Deleted {deleted} sync run(s) older than {retention_days} day(s).")


@sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the sync background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_worker_enabled(app):
        click.echo(
            "Warning: SYNC_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.option("--beat/--no-beat", default=False, help="Embed the beat scheduler in the worker process.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str, beat: bool):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])
    if beat:
        argv.append("--beat")

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting sync worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'sync.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))
