"""OperationDriver: carries one pending operation from intent to finalization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from chronovec.engine.batches import BatchRunner
from chronovec.engine.locking import CasMismatch, OptimisticLock
from chronovec.engine.planning import planner_for
from chronovec.exceptions import ChronovecError, ConflictError, ConsistencyError, PartialFailureError
from chronovec.log import FinalizeOutcome
from chronovec.models import BatchKind, CommitRecord, OpStatus
from chronovec.retry import TRANSIENT_STORE_ERRORS

if TYPE_CHECKING:
    from chronovec.config import EngineConfig
    from chronovec.engine.planning import PlannedOp
    from chronovec.log import DurableLog
    from chronovec.models import GroupPointer, PendingOperation
    from chronovec.store.protocols import PointStore

logger = logging.getLogger(__name__)


@dataclass
class DriveResult:
    """How a drive ended.

    ``outcome`` is ``FINALIZED`` when this driver wrote the final
    transaction, or ``GONE`` when the operation had already been finalized
    by someone else (a concurrent repair, for example).
    """

    outcome: FinalizeOutcome
    op_id: str
    group_id: str
    op_type: str
    aborting: bool = False
    batches_applied: int = 0
    request: dict[str, Any] = field(default_factory=dict)


class OperationDriver:
    """Apply an operation's batches and finalize it under the optimistic lock.

    One attempt reads the operation and the group pointer, re-plans if the
    pointer moved since the plan was made, applies the remaining batches,
    and tries the finalize transaction.  A rejected CAS ends the attempt
    with :class:`CasMismatch` and the lock schedules the next one.
    """

    def __init__(self, log: DurableLog, store: PointStore, config: EngineConfig) -> None:
        self._log = log
        self._config = config
        self._runner = BatchRunner(log, store, config.store_retry)
        self._lock = OptimisticLock(config.cas_retry)

    async def plan(self, op: PendingOperation, pointer: GroupPointer) -> PlannedOp:
        """Derive a plan for *op* against *pointer* without touching the log."""
        planner = planner_for(op.op_type, op.aborting)
        return await planner(self._log, op.group_id, pointer, op.request, self._config.batch_size)

    async def drive(self, op_id: str, group_id: str) -> DriveResult:
        """Drive *op_id* to its final transaction.

        Raises:
            ConflictError: The CAS lost on every attempt.
            StoreUnavailableError: A batch kept failing after store retries.
        """
        applied = 0

        async def attempt(number: int) -> DriveResult:
            nonlocal applied
            op = await self._log.get_pending_op(op_id)
            if op is None:
                return DriveResult(FinalizeOutcome.GONE, op_id, group_id, "", batches_applied=applied)

            pointer = await self._log.get_group_pointer(op.group_id)
            if pointer is None:
                raise ConsistencyError(
                    "Pending operation refers to an unknown group", group_id=group_id, op_id=op_id
                )
            if pointer.version_counter != op.expected_version:
                logger.info(
                    "Group %s moved from version %d to %d; re-planning %s (attempt %d)",
                    group_id, op.expected_version, pointer.version_counter, op_id, number,
                )
                op = await self._replan(op, pointer)

            await self._log.update_pending_op_status(op_id, OpStatus.IN_PROGRESS, count_attempt=True)
            applied += await self._runner.apply_pending(op)

            outcome = await self._finalize(op)
            if outcome is FinalizeOutcome.CAS_REJECTED:
                raise CasMismatch(group_id, op.expected_version)
            return DriveResult(
                outcome,
                op_id,
                group_id,
                op.op_type,
                aborting=op.aborting,
                batches_applied=applied,
                request=dict(op.request),
            )

        return await self._lock.run(group_id, attempt, op_id=op_id)

    async def abort(self, op_id: str) -> PendingOperation | None:
        """Switch *op_id* to its compensation plan. Return ``None`` if it already finished."""
        op = await self._log.get_pending_op(op_id)
        if op is None:
            return None
        if op.aborting:
            return op
        pointer = await self._log.get_group_pointer(op.group_id)
        if pointer is None:
            raise ConsistencyError(
                "Pending operation refers to an unknown group", group_id=op.group_id, op_id=op_id
            )
        op.aborting = True
        logger.warning("Compensating %s %s on group %s", op.op_type, op_id, op.group_id)
        return await self._replan(op, pointer)

    async def drive_or_compensate(self, op_id: str, group_id: str) -> DriveResult:
        """Drive *op_id*; if the CAS keeps losing, compensate it and raise ``ConflictError``.

        The compensation itself runs under the same lock policy.  If that
        also loses every race, the operation stays in the log flagged as
        aborting and ``repair()`` finishes the compensation.
        """
        try:
            return await self.drive(op_id, group_id)
        except ConflictError as exc:
            if await self.abort(op_id) is None:
                # Finalized by someone else between the last attempt and now
                return await self.drive(op_id, group_id)
            await self.drive(op_id, group_id)
            raise ConflictError(
                "Concurrent modification: operation rolled back, retry it later",
                group_id=group_id,
                op_id=op_id,
            ) from exc

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _replan(self, op: PendingOperation, pointer: GroupPointer) -> PendingOperation:
        uncertain = await self._unrecorded_refs(op.op_id)
        planner = planner_for(op.op_type, op.aborting)
        planned = await planner(
            self._log,
            op.group_id,
            pointer,
            op.request,
            self._config.batch_size,
            uncertain=uncertain,
        )
        op.target_commit_hash = planned.target_commit_hash
        op.expected_version = planned.expected_version
        op.request = planned.request
        return await self._log.replace_plan(op, planned.batches)

    async def _unrecorded_refs(self, op_id: str) -> frozenset[str]:
        """Refs in activity batches that may have reached the store but not the mirror."""
        batches = await self._log.get_batches(op_id, pending_only=True)
        return frozenset(
            e["vector_ref"]
            for batch in batches
            if batch.kind == BatchKind.ACTIVITY.value
            for e in batch.entries
        )

    async def _finalize(self, op: PendingOperation) -> FinalizeOutcome:
        final = op.request["finalize"]
        commit = None
        if final["commit"] is not None:
            fields = dict(final["commit"])
            fields["timestamp"] = datetime.fromisoformat(fields["timestamp"])
            commit = CommitRecord(group_id=op.group_id, op_id=op.op_id, **fields)
        return await self._log.finalize_operation(
            op.op_id,
            op.group_id,
            op.expected_version,
            active_commit_hash=final["active"],
            head_commit_hash=final["head"],
            commit=commit,
        )


async def record_partial_failure(
    log: DurableLog,
    group_id: str,
    op_id: str,
    exc: BaseException,
) -> PartialFailureError:
    """Record *exc* on the pending operation and build the error to raise."""
    op = await log.get_pending_op(op_id)
    if op is not None:
        await log.update_pending_op_status(op_id, OpStatus(op.status), error=str(exc))
    logger.error("Operation %s on group %s left pending: %s", op_id, group_id, exc)
    return PartialFailureError(
        f"PointStore did not converge ({exc}); the operation is durable and "
        "repair() is safe to run",
        group_id=group_id,
        op_id=op_id,
    )


async def drive_recorded(
    log: DurableLog,
    driver: OperationDriver,
    op_id: str,
    group_id: str,
) -> DriveResult:
    """Drive a freshly recorded operation for its caller.

    A store failure leaves the operation in the log and surfaces as
    :class:`PartialFailureError`.  That includes errors a store adapter
    raises outside the ``ChronovecError`` hierarchy.
    """
    try:
        return await driver.drive_or_compensate(op_id, group_id)
    except TRANSIENT_STORE_ERRORS as exc:
        raise await record_partial_failure(log, group_id, op_id, exc) from exc
    except ChronovecError:
        raise
    except Exception as exc:
        logger.exception("Unexpected %s from %s on group %s", type(exc).__name__, op_id, group_id)
        raise await record_partial_failure(log, group_id, op_id, exc) from exc
