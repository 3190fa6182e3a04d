"""RecoveryScanner: re-drive pending operations left behind by a crash or outage."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chronovec.events import EventType, VaultEvent
from chronovec.exceptions import ChronovecError, ConflictError, DurableLogError
from chronovec.log import FinalizeOutcome
from chronovec.models import OpStatus
from chronovec.retry import TRANSIENT_STORE_ERRORS, call_with_retry
from chronovec.types import RepairOutcome, RepairReport

if TYPE_CHECKING:
    from chronovec.config import EngineConfig
    from chronovec.engine.operations import OperationDriver
    from chronovec.events import EventBus
    from chronovec.log import DurableLog
    from chronovec.models import PendingOperation

logger = logging.getLogger(__name__)


class RecoveryScanner:
    """Finds every PENDING or IN_PROGRESS operation and drives it to completion.

    Recovery is re-entrant: it can be interrupted at any point and run
    again, and it may race a live caller of the same operation (the
    finalize transaction is idempotent by ``op_id``).  Log writes that
    only record status are retried, since a transient log failure must
    not strand an operation that is otherwise recoverable.
    """

    def __init__(
        self,
        log: DurableLog,
        driver: OperationDriver,
        config: EngineConfig,
        events: EventBus | None = None,
    ) -> None:
        self._log = log
        self._driver = driver
        self._config = config
        self._events = events

    async def repair(self, group_id: str | None = None) -> RepairReport:
        """Re-drive pending operations, optionally only those of *group_id*.

        Operations are handled oldest first.  One operation failing does
        not stop the scan; its outcome records the error.
        """
        ops = await call_with_retry(
            self._config.log_retry,
            self._log.read_pending_ops,
            group_id=group_id,
            retry_on=(DurableLogError,),
        )
        report = RepairReport()
        if not ops:
            logger.debug("No pending operations%s", f" for group {group_id}" if group_id else "")
            return report

        logger.info("Repairing %d pending operation(s)", len(ops))
        for op in ops:
            outcome = await self._repair_one(op)
            report.outcomes.append(outcome)
            logger.info(
                "Repair of %s %s on group %s: %s",
                outcome.op_type, outcome.op_id, outcome.group_id, outcome.status,
            )
        return report

    async def _repair_one(self, op: PendingOperation) -> RepairOutcome:
        try:
            await call_with_retry(
                self._config.log_retry,
                self._log.update_pending_op_status,
                op.op_id,
                OpStatus.IN_PROGRESS,
                retry_on=(DurableLogError,),
            )
            try:
                result = await self._driver.drive(op.op_id, op.group_id)
                compensated = result.aborting
            except ConflictError:
                logger.warning("Operation %s keeps losing the CAS; compensating", op.op_id)
                compensated = await self._driver.abort(op.op_id) is not None
                result = await self._driver.drive(op.op_id, op.group_id)
        except ConflictError as exc:
            return await self._unresolved(op, "exhausted", exc)
        except TRANSIENT_STORE_ERRORS as exc:
            return await self._unresolved(op, "exhausted", exc)
        except ChronovecError as exc:
            return await self._unresolved(op, "failed", exc)
        except Exception as exc:
            # An adapter error outside the hierarchy fails this op, not the scan
            logger.exception("Unexpected %s while repairing %s", type(exc).__name__, op.op_id)
            return await self._unresolved(op, "failed", exc)

        if result.outcome is FinalizeOutcome.GONE:
            logger.info("Operation %s was finalized elsewhere", op.op_id)
        status = "compensated" if compensated else "completed"
        await self._emit(op, status)
        return RepairOutcome(
            op_id=op.op_id,
            group_id=op.group_id,
            op_type=op.op_type,
            status=status,
            batches_applied=result.batches_applied,
        )

    async def _unresolved(self, op: PendingOperation, status: str, exc: BaseException) -> RepairOutcome:
        logger.error("Operation %s on group %s still pending: %s", op.op_id, op.group_id, exc)
        try:
            await call_with_retry(
                self._config.log_retry,
                self._log.update_pending_op_status,
                op.op_id,
                OpStatus.PENDING,
                error=str(exc),
                retry_on=(DurableLogError,),
            )
        except DurableLogError:
            logger.warning("Could not record the failure of %s", op.op_id, exc_info=True)
        return RepairOutcome(
            op_id=op.op_id,
            group_id=op.group_id,
            op_type=op.op_type,
            status=status,
            error=str(exc),
        )

    async def _emit(self, op: PendingOperation, status: str) -> None:
        if self._events is None:
            return
        event_type = (
            EventType.OPERATION_COMPENSATED if status == "compensated" else EventType.OPERATION_RESUMED
        )
        await self._events.emit(
            VaultEvent(
                event_type=event_type,
                group_id=op.group_id,
                commit_hash=op.target_commit_hash,
                op_id=op.op_id,
                details={"op_type": op.op_type},
            )
        )
