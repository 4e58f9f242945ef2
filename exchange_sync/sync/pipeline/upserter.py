"""
Bounded-concurrency find-or-create-or-update over one batch of remote records.

Per-record failures are recorded and never abort the batch. Cancellation is
the only signal that escapes ``apply``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Literal, Mapping, Sequence

from exchange_sync.models import SyncKind
from exchange_sync.sync.cancellation import CancellationToken
from exchange_sync.sync.errors import SyncCancelled
from exchange_sync.sync.metrics import record_outcomes
from exchange_sync.sync.pipeline.records import parse_record
from exchange_sync.sync.pipeline.store import SqlAlchemyStore
from exchange_sync.sync.pipeline.transformers import get_transformer

Outcome = Literal["created", "updated", "error"]


@dataclass(frozen=True)
class RecordOutcome:
    external_id: str
    outcome: Outcome
    error: str | None = None


@dataclass
class BatchResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: List[str] = field(default_factory=list)

    def add(self, outcome: RecordOutcome) -> None:
        self.processed += 1
        if outcome.outcome == "created":
            self.created += 1
        elif outcome.outcome == "updated":
            self.updated += 1
        elif outcome.error:
            self.errors.append(outcome.error)

    def merge(self, other: "BatchResult") -> None:
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "errors": list(self.errors),
        }


def _payload_id(payload: Any) -> str:
    if isinstance(payload, Mapping) and payload.get("id") not in (None, ""):
        return str(payload.get("id"))
    return "unknown"


class BatchUpserter:
    """Apply a slice of raw records for one kind using a worker pool sized to the batch."""

    def __init__(
        self,
        store: SqlAlchemyStore,
        *,
        max_workers: int | None = None,
        cancel_token: CancellationToken | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.max_workers = max_workers
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = logger or logging.getLogger(__name__)

    def pool_size(self, batch_len: int) -> int:
        size = max(1, batch_len)
        if self.max_workers:
            size = min(size, max(1, int(self.max_workers)))
        return size

    def apply(self, kind: SyncKind | str, records: Sequence[Any]) -> BatchResult:
        kind = SyncKind(kind)
        result = BatchResult()
        if not records:
            return result

        transformer = get_transformer(kind)
        with ThreadPoolExecutor(
            max_workers=self.pool_size(len(records)), thread_name_prefix=f"sync-{kind.value}"
        ) as executor:
            futures = [executor.submit(self._upsert_one, transformer, payload) for payload in records]
            cancelled: SyncCancelled | None = None
            for future in futures:
                try:
                    result.add(future.result())
                except SyncCancelled as exc:
                    cancelled = cancelled or exc
            if cancelled is not None:
                raise cancelled

        record_outcomes(kind=kind.value, created=result.created, updated=result.updated, errors=len(result.errors))
        self.logger.info(
            "Applied batch",
            extra={
                "sync_kind": kind.value,
                "sync_processed": result.processed,
                "sync_created": result.created,
                "sync_updated": result.updated,
                "sync_errors": len(result.errors),
            },
        )
        return result

    def _upsert_one(self, transformer, payload: Any) -> RecordOutcome:
        self.cancel_token.raise_if_cancelled()
        record_id = _payload_id(payload)
        try:
            record = parse_record(transformer.kind, payload)
            with self.store.unit_of_work() as uow:
                fields = transformer.transform(record, uow)
                entity, created = uow.find_or_create(transformer.model, transformer.key_column, record.id, fields)
                if not created:
                    uow.update(entity, fields)
                transformer.after_upsert(entity, record, uow)
        except SyncCancelled:
            raise
        except Exception as exc:
            message = f"{transformer.label} {record_id}: {exc}"
            self.logger.warning(
                "Record upsert failed",
                extra={"sync_kind": transformer.kind.value, "sync_external_id": record_id, "error": str(exc)},
            )
            return RecordOutcome(external_id=record_id, outcome="error", error=message)
        return RecordOutcome(external_id=record.id, outcome="created" if created else "updated")
