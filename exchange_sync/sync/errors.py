"""Exception taxonomy for the sync engine."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base error for sync failures."""


class RateLimited(SyncError):
    """Raised by the remote client on HTTP 429; the caller owns the backoff policy."""

    def __init__(self, retry_after: float, *, path: str | None = None) -> None:
        self.retry_after = retry_after
        self.path = path
        super().__init__(f"Rate limited on {path or 'remote API'}; retry after {retry_after}s")


class RemoteAPIError(SyncError):
    """Non-2xx response (other than 429) or transport failure talking to the remote API."""

    def __init__(self, status: int | None, body: str = "", *, path: str | None = None) -> None:
        self.status = status
        self.body = body
        self.path = path
        status_label = status if status is not None else "network error"
        preview = body[:200] if body else ""
        super().__init__(f"Remote API error ({status_label}) on {path or 'request'}: {preview}".rstrip(": "))


class TransformError(SyncError):
    """Remote record has an unexpected shape; recorded per record."""


class PersistenceError(SyncError):
    """Local store failure on a single record; recorded per record."""


class RunFatalError(SyncError):
    """Aborts the current run. Prior progress is kept."""


class RateLimitExhausted(RunFatalError):
    """Pagination gave up after too many consecutive 429 responses."""


class SyncCancelled(RunFatalError):
    """Operator-initiated abort observed through a cancellation token."""


class SyncAlreadyRunning(RunFatalError):
    """Another run for the same account is still in progress."""

    def __init__(self, account: str, run_id: int) -> None:
        self.account = account
        self.run_id = run_id
        super().__init__(f"Sync run {run_id} is already running for account '{account}'.")
