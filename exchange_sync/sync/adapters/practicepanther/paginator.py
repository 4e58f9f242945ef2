"""Drive page-by-page fetches of one PracticePanther collection."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Mapping

from exchange_sync.sync.adapters.practicepanther.client import RemoteClient
from exchange_sync.sync.cancellation import CancellationToken
from exchange_sync.sync.errors import RateLimited, RateLimitExhausted
from exchange_sync.sync.metrics import record_page_fetch, record_rate_limited

DEFAULT_PAGE_SIZE = 100
DEFAULT_INTER_PAGE_DELAY = 0.1
INTER_PAGE_DELAYS: Mapping[str, float] = {"matters": 0.15}
MAX_CONSECUTIVE_RATE_LIMITS = 5


class Paginator:
    """
    Fetch every page of a collection, sleeping between pages and backing off on 429.

    Records accumulated before a rate limit are kept; the same page is retried
    after ``retry_after`` seconds, up to ``max_rate_limit_retries`` times in a
    row; the next consecutive 429 on that page raises ``RateLimitExhausted``.
    """

    def __init__(
        self,
        client: RemoteClient,
        *,
        max_rate_limit_retries: int = MAX_CONSECUTIVE_RATE_LIMITS,
        sleep_fn=time.sleep,
        cancel_token: CancellationToken | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.max_rate_limit_retries = max(1, int(max_rate_limit_retries))
        self.sleep = sleep_fn
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = logger or logging.getLogger(__name__)

    def fetch_all(
        self,
        collection: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        include: str | None = None,
        on_page: Callable[[int], None] | None = None,
    ) -> List[Mapping[str, Any]]:
        """Return every record of ``collection``. ``on_page`` is called with the page number after each page."""

        records: List[Mapping[str, Any]] = []
        delay = INTER_PAGE_DELAYS.get(collection, DEFAULT_INTER_PAGE_DELAY)
        page = 1
        consecutive_rate_limits = 0

        while True:
            self.cancel_token.raise_if_cancelled()
            params = {
                "page": page,
                "per_page": page_size,
                "sort_by": "updated_at",
                "sort_order": "desc",
                "include": include,
            }
            started = time.perf_counter()
            try:
                result = self.client.fetch_page(collection, params)
            except RateLimited as exc:
                consecutive_rate_limits += 1
                record_rate_limited(collection)
                if consecutive_rate_limits > self.max_rate_limit_retries:
                    raise RateLimitExhausted(
                        f"Rate limited {consecutive_rate_limits} times in a row on {collection} page {page}"
                    ) from exc
                self.logger.warning(
                    "Rate limited; backing off",
                    extra={
                        "sync_collection": collection,
                        "sync_page": page,
                        "retry_after": exc.retry_after,
                        "attempt": consecutive_rate_limits,
                    },
                )
                self.sleep(exc.retry_after)
                self.cancel_token.raise_if_cancelled()
                continue
            record_page_fetch(time.perf_counter() - started)

            consecutive_rate_limits = 0
            records.extend(result.records)
            if on_page is not None:
                on_page(page)
            self.logger.info(
                "Fetched page",
                extra={
                    "sync_collection": collection,
                    "sync_page": result.page_info.current_page,
                    "sync_total_pages": result.page_info.total_pages,
                    "sync_page_records": len(result.records),
                },
            )
            if result.page_info.current_page >= result.page_info.total_pages:
                break
            page += 1
            self.sleep(delay)
            self.cancel_token.raise_if_cancelled()

        return records


def chunk_records(records, chunk_size: int):
    """Group records into lists of ``chunk_size``."""

    chunk: list = []
    for record in records:
        chunk.append(record)
        if len(chunk) == chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
