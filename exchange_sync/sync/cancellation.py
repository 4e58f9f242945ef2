"""Cooperative cancellation shared by the paginator and the upserter."""

from __future__ import annotations

import threading

from exchange_sync.sync.errors import SyncCancelled


class CancellationToken:
    """Thread-safe cancel flag checked between pages, sleeps and records."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by operator") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled(f"Sync cancelled: {self.reason}")
