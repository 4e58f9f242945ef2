"""
HTTP client for the PracticePanther REST API.

The client attaches auth, timeout and user agent, and classifies failures into
typed errors. It never sleeps: backoff on ``RateLimited`` is the paginator's job.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping

import requests

from exchange_sync.sync.adapters.practicepanther.credentials import CredentialProvider
from exchange_sync.sync.errors import RateLimited, RemoteAPIError

DEFAULT_BASE_URL = "https://app.practicepanther.com/api/v2"
USER_AGENT = "Peak1031-Integration/1.0.0"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_AFTER = 60.0
HEALTH_TIMEOUT = 5.0
CONNECTION_TEST_TIMEOUT = 10.0


@dataclass(frozen=True)
class PageInfo:
    current_page: int
    total_pages: int


@dataclass(frozen=True)
class PageResult:
    """One page of raw records plus the server's pagination metadata."""

    records: List[Mapping[str, Any]]
    page_info: PageInfo
    headers: Mapping[str, str] = field(default_factory=dict)


def parse_retry_after(value: str | None) -> float:
    """Read a ``Retry-After`` header in seconds; fall back to 60s when absent or malformed."""

    if value is None:
        return DEFAULT_RETRY_AFTER
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER
    return seconds if seconds >= 0 else DEFAULT_RETRY_AFTER


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class RemoteClient:
    """Thin wrapper over ``requests.Session`` for PracticePanther collections."""

    def __init__(
        self,
        *,
        credentials: CredentialProvider,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    def fetch_page(self, collection: str, page_params: Mapping[str, Any]) -> PageResult:
        """GET one page of ``collection``. Raises ``RateLimited`` or ``RemoteAPIError``."""

        params = {key: value for key, value in page_params.items() if value is not None}
        response = self._request("GET", f"/{collection}", params=params)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteAPIError(response.status_code, response.text, path=f"/{collection}") from exc

        data = payload.get("data") if isinstance(payload, Mapping) else None
        meta = payload.get("meta") if isinstance(payload, Mapping) else None
        records = list(data or [])
        meta = meta or {}
        requested_page = int(params.get("page", 1))
        page_info = PageInfo(
            current_page=int(meta.get("current_page") or requested_page),
            total_pages=int(meta.get("total_pages") or 1),
        )
        return PageResult(records=records, page_info=page_info, headers=dict(response.headers))

    def health_check(self) -> dict[str, Any]:
        try:
            response = self._request("GET", "/ping", timeout=HEALTH_TIMEOUT)
        except (RateLimited, RemoteAPIError) as exc:
            return {"status": "unhealthy", "error": str(exc), "timestamp": _utc_timestamp()}
        return {
            "status": "healthy",
            "response_time": response.headers.get("X-Response-Time", "unknown"),
            "api_version": response.headers.get("X-Api-Version", "unknown"),
            "timestamp": _utc_timestamp(),
        }

    def test_connection(self) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            response = self._request("GET", "/contacts", params={"per_page": 1}, timeout=CONNECTION_TEST_TIMEOUT)
        except RateLimited as exc:
            return {"success": False, "message": str(exc), "status": 429}
        except RemoteAPIError as exc:
            return {"success": False, "message": str(exc), "status": exc.status}
        return {
            "success": True,
            "message": "Connection successful",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
            "api_limit": response.headers.get("X-RateLimit-Limit"),
            "api_remaining": response.headers.get("X-RateLimit-Remaining"),
            "api_reset": response.headers.get("X-RateLimit-Reset"),
        }

    def get_api_usage(self) -> dict[str, Any]:
        try:
            response = self._request("GET", "/contacts", params={"per_page": 1})
        except (RateLimited, RemoteAPIError) as exc:
            return {"error": str(exc), "timestamp": _utc_timestamp()}
        return {
            "rate_limit": {
                "limit": _int_or_unknown(response.headers.get("X-RateLimit-Limit")),
                "remaining": _int_or_unknown(response.headers.get("X-RateLimit-Remaining")),
                "reset": response.headers.get("X-RateLimit-Reset") or "unknown",
            },
            "timestamp": _utc_timestamp(),
        }

    # Internal helpers -----------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.get_token()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _send(self, method: str, path: str, params, timeout: float) -> requests.Response:
        url = f"{self.base_url}{path}"
        self.logger.debug("PracticePanther request", extra={"http_method": method, "http_path": path})
        try:
            response = self.session.request(method, url, headers=self._headers(), params=params, timeout=timeout)
        except requests.RequestException as exc:
            self.logger.warning(
                "PracticePanther request failed",
                extra={"http_method": method, "http_path": path, "error": str(exc)},
            )
            raise RemoteAPIError(None, str(exc), path=path) from exc
        self.logger.debug(
            "PracticePanther response",
            extra={"http_method": method, "http_path": path, "http_status": response.status_code},
        )
        return response

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        effective_timeout = timeout or self.timeout
        response = self._send(method, path, params, effective_timeout)
        if response.status_code == 401:
            self.logger.info("PracticePanther token rejected; refreshing once", extra={"http_path": path})
            self.credentials.invalidate()
            response = self._send(method, path, params, effective_timeout)

        if response.status_code == 429:
            raise RateLimited(parse_retry_after(response.headers.get("Retry-After")), path=path)
        if not 200 <= response.status_code < 300:
            raise RemoteAPIError(response.status_code, response.text or "", path=path)
        return response


def _int_or_unknown(value: str | None):
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "unknown"
