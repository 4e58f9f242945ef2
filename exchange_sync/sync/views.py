"""
Read-only sync endpoints: adapter health, worker heartbeat, status and run history.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import NoResultFound

from config.monitoring import SyncMonitoring
from exchange_sync.utils.sync_flags import is_sync_enabled

from .celery_app import DEFAULT_QUEUE_NAME, SYNC_EXTENSION_KEY, get_celery_app
from .pipeline.run_service import RunFilters, SyncRunStore
from .tasks import run_result_payload

sync_blueprint = Blueprint("sync", __name__, url_prefix="/sync")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _ensure_sync_enabled_api():
    if not is_sync_enabled(current_app):
        return _json_error("Sync is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _run_store() -> SyncRunStore:
    return SyncRunStore()


def _split_csv(value: str | None):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@sync_blueprint.get("/health")
def sync_healthcheck():
    """
    Lightweight health endpoint exposing sync flag state and adapter readiness.
    """
    state = current_app.extensions.get(SYNC_EXTENSION_KEY, {})
    readiness = state.get("adapter_readiness") or {}
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
                "adapter": readiness,
            }
        ),
        HTTPStatus.OK,
    )


@sync_blueprint.get("/worker_health")
def sync_worker_health():
    """
    Validate sync worker availability via the heartbeat task.
    """
    state = current_app.extensions.get(SYNC_EXTENSION_KEY, {})
    enabled = state.get("enabled", False)
    worker_enabled = state.get("worker_enabled", False)
    try:
        timeout_seconds = float(request.args.get("timeout", 5))
    except ValueError:
        return _json_error("timeout must be a number of seconds.", HTTPStatus.BAD_REQUEST)

    payload = {
        "sync_enabled": enabled,
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not enabled or not worker_enabled:
        payload["status"] = "disabled"
        if enabled:
            payload["message"] = "Worker flag disabled; start the worker or set SYNC_WORKER_ENABLED=true."
        return jsonify(payload), HTTPStatus.OK

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        payload["status"] = "ok"
        return jsonify(payload), HTTPStatus.OK
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), HTTPStatus.GATEWAY_TIMEOUT


@sync_blueprint.get("/status")
def sync_status():
    enabled_response = _ensure_sync_enabled_api()
    if enabled_response:
        return enabled_response

    start_time = time.perf_counter()
    try:
        payload = _run_store().get_sync_status()
    except Exception as exc:  # pragma: no cover
        current_app.logger.exception("Sync status lookup failed.", exc_info=exc)
        SyncMonitoring.record_status(duration_seconds=time.perf_counter() - start_time, status="error")
        return _json_error("Failed to load sync status.", HTTPStatus.INTERNAL_SERVER_ERROR)

    SyncMonitoring.record_status(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(payload), HTTPStatus.OK


@sync_blueprint.get("/runs")
def sync_runs_list():
    enabled_response = _ensure_sync_enabled_api()
    if enabled_response:
        return enabled_response

    try:
        filters = RunFilters.coerce(
            page=request.args.get("page"),
            page_size=request.args.get("page_size"),
            sort=request.args.get("sort"),
            statuses=_split_csv(request.args.get("status")),
            kinds=_split_csv(request.args.get("kind")),
            started_from=request.args.get("started_from"),
            started_to=request.args.get("started_to"),
        )
    except ValueError as exc:
        SyncMonitoring.record_runs_list(duration_seconds=0.0, status="invalid_request", result_count=0)
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    result = _run_store().list_runs(filters)
    duration = time.perf_counter() - start_time
    SyncMonitoring.record_runs_list(duration_seconds=duration, status="success", result_count=len(result.items))

    return (
        jsonify(
            {
                "runs": [item.to_dict() for item in result.items],
                "total": result.total,
                "page": result.page,
                "page_size": result.page_size,
                "total_pages": result.total_pages,
            }
        ),
        HTTPStatus.OK,
    )


@sync_blueprint.get("/runs/<int:run_id>")
def sync_run_detail(run_id: int):
    enabled_response = _ensure_sync_enabled_api()
    if enabled_response:
        return enabled_response

    store = _run_store()
    start_time = time.perf_counter()
    try:
        run = store.get_run(run_id)
    except NoResultFound:
        SyncMonitoring.record_runs_detail(duration_seconds=time.perf_counter() - start_time, status="not_found")
        return _json_error(f"Sync run {run_id} not found.", HTTPStatus.NOT_FOUND)

    payload = run_result_payload(run)
    SyncMonitoring.record_runs_detail(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(payload), HTTPStatus.OK
