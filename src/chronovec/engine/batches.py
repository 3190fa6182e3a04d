"""BatchRunner: applies a pending operation's batch plan to the PointStore."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chronovec.exceptions import StoreUnavailableError
from chronovec.models import BatchKind
from chronovec.retry import call_with_retry
from chronovec.store.types import ActivityUpdate, PointRecord

if TYPE_CHECKING:
    from chronovec.config import RetryPolicy
    from chronovec.log import DurableLog
    from chronovec.models import PendingBatch, PendingOperation
    from chronovec.store.protocols import PointStore
    from chronovec.store.types import StoreResult

logger = logging.getLogger(__name__)


class BatchRunner:
    """Sends unapplied batches to the store, in ``seq`` order, and records each one.

    A batch is marked applied only after the store acknowledged every
    entry.  Store calls are idempotent (explicit targets, ids fixed at
    plan time), so a batch interrupted between the store call and the log
    write is simply sent again.
    """

    def __init__(self, log: DurableLog, store: PointStore, retry: RetryPolicy) -> None:
        self._log = log
        self._store = store
        self._retry = retry

    async def apply_pending(self, op: PendingOperation) -> int:
        """Apply every batch of *op* not yet marked applied. Return how many were applied.

        Raises:
            StoreUnavailableError: A batch still failed after the retry
                policy was exhausted.  Batches before it stay applied.
        """
        batches = await self._log.get_batches(op.op_id, pending_only=True)
        for batch in batches:
            await call_with_retry(self._retry, self._send, batch, op)
            await self._log.mark_batch_applied(batch, op.group_id)
            logger.debug(
                "Applied %s batch %d of %s (%d entries)",
                batch.kind, batch.seq, op.op_id, len(batch.entries),
            )
        return len(batches)

    async def _send(self, batch: PendingBatch, op: PendingOperation) -> StoreResult:
        kind = BatchKind(batch.kind)
        if kind is BatchKind.UPSERT:
            result = await self._store.upsert_points([
                PointRecord(id=e["vector_ref"], vector=e["vector"], payload=e["payload"])
                for e in batch.entries
            ])
        elif kind is BatchKind.ACTIVITY:
            result = await self._store.set_activity([
                ActivityUpdate(id=e["vector_ref"], is_active=e["is_active"])
                for e in batch.entries
            ])
        else:
            result = await self._store.delete_points([e["vector_ref"] for e in batch.entries])

        if not result.ok:
            raise StoreUnavailableError(
                f"{self._store.name} rejected {len(result.errors)} of {len(batch.entries)} "
                f"entries in {batch.kind} batch {batch.seq}: {result.errors[0]}",
                group_id=op.group_id,
                op_id=op.op_id,
            )
        return result
