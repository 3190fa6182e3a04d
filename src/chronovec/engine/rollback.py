"""RollbackEngine: make an earlier commit active again, and read history."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from chronovec.engine.operations import drive_recorded
from chronovec.engine.planning import History, load_snapshot
from chronovec.exceptions import ConflictError, NotFoundError
from chronovec.log import FinalizeOutcome
from chronovec.models import OpType, PendingOperation
from chronovec.types import CommitInfo, RollbackInfo

if TYPE_CHECKING:
    from chronovec.engine.operations import OperationDriver
    from chronovec.log import DurableLog

logger = logging.getLogger(__name__)


class RollbackEngine:
    """Moves a group's active commit to any commit of its chain.

    A rollback never rewrites history: the chain head stays where it is
    and the next commit is appended after it, built on top of the
    rolled-back state.
    """

    def __init__(self, log: DurableLog, driver: OperationDriver) -> None:
        self._log = log
        self._driver = driver

    async def rollback(self, group_id: str, target_commit_hash: str) -> RollbackInfo:
        """Activate exactly the versions reachable from *target_commit_hash*.

        Raises:
            NotFoundError: Unknown group, a commit outside the group's chain,
                or a commit whose versions were reclaimed by the garbage
                collector.
            ConflictError: Lost the optimistic-lock race on every attempt.
            PartialFailureError: The store stayed unavailable; run ``repair()``.
        """
        pointer = await self._log.get_group_pointer(group_id)
        if pointer is None:
            raise NotFoundError("Unknown group", group_id=group_id)

        history = await History.load(self._log, group_id)
        if target_commit_hash not in history:
            raise NotFoundError(f"Commit {target_commit_hash} is not in the chain", group_id=group_id)

        if target_commit_hash == pointer.active_commit_hash:
            logger.info("Group %s already at %s; nothing to roll back", group_id, target_commit_hash)
            return RollbackInfo(
                group_id=group_id,
                previous_commit_hash=pointer.active_commit_hash,
                active_commit_hash=target_commit_hash,
                noop=True,
            )

        snapshot = await load_snapshot(self._log, history, group_id, target_commit_hash)
        if not snapshot.complete:
            raise NotFoundError(
                f"Commit {target_commit_hash} is no longer restorable: "
                f"{len(snapshot.missing)} point versions were garbage collected",
                group_id=group_id,
            )

        op_id = str(uuid.uuid4())
        op = PendingOperation(
            op_id=op_id,
            op_type=OpType.ROLLBACK.value,
            group_id=group_id,
            target_commit_hash=target_commit_hash,
            expected_version=pointer.version_counter,
            request={"target": target_commit_hash},
        )
        planned = await self._driver.plan(op, pointer)
        op.request = planned.request
        await self._log.create_pending_op(op, planned.batches)

        result = await drive_recorded(self._log, self._driver, op_id, group_id)
        if result.outcome is FinalizeOutcome.GONE:
            # Finished by a concurrent repair, which may have compensated it
            current = await self._log.get_group_pointer(group_id)
            if current is None or current.active_commit_hash != target_commit_hash:
                raise ConflictError(
                    "Rollback was rolled back by recovery", group_id=group_id, op_id=op_id
                )

        request = result.request or planned.request
        info = RollbackInfo(
            group_id=group_id,
            previous_commit_hash=request.get("previous"),
            active_commit_hash=target_commit_hash,
            op_id=op_id,
            activated=request.get("activated", 0),
            deactivated=request.get("deactivated", 0),
        )
        logger.info(
            "Rolled back group %s from %s to %s (+%d/-%d)",
            group_id, info.previous_commit_hash, target_commit_hash, info.activated, info.deactivated,
        )
        return info

    async def checkout(self, group_id: str, commit_hash: str) -> RollbackInfo:
        """Alias of :meth:`rollback`."""
        return await self.rollback(group_id, commit_hash)

    async def history(self, group_id: str, limit: int | None = None) -> list[CommitInfo]:
        """Commits of *group_id*, newest first.

        Raises:
            NotFoundError: Unknown group.
        """
        if await self._log.get_group_pointer(group_id) is None:
            raise NotFoundError("Unknown group", group_id=group_id)
        return [CommitInfo.from_record(c) for c in await self._log.list_commits(group_id, limit)]
