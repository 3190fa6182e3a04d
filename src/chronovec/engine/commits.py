"""CommitManager: record new point versions as a commit in a group's chain."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from chronovec.engine.operations import drive_recorded
from chronovec.exceptions import ConflictError
from chronovec.hashing import default_point_id, make_vector_ref, point_digest
from chronovec.models import OpType, PendingOperation
from chronovec.types import CommitInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from chronovec.engine.operations import OperationDriver
    from chronovec.log import DurableLog
    from chronovec.types import NewPoint

logger = logging.getLogger(__name__)


def validate_points(group_id: str, points: Sequence[NewPoint]) -> None:
    """Reject a commit request before anything is written.

    Raises:
        ValueError: No points, a negative chunk index, an empty vector, or
            two points for the same slot or the same ``point_id``.
    """
    if not points:
        raise ValueError(f"A commit to group {group_id!r} needs at least one point")
    seen: set[tuple[str, int]] = set()
    explicit_ids: set[str] = set()
    for point in points:
        if point.chunk_index < 0:
            raise ValueError(
                f"chunk_index must be >= 0, got {point.chunk_index} for {point.source_doc_id!r} "
                f"in group {group_id!r}"
            )
        if not point.vector:
            raise ValueError(f"Empty vector for {point.source_doc_id!r}[{point.chunk_index}] in group {group_id!r}")
        if point.key in seen:
            raise ValueError(
                f"Duplicate chunk {point.source_doc_id!r}[{point.chunk_index}] in one commit to group {group_id!r}"
            )
        seen.add(point.key)
        if point.point_id is not None:
            if point.point_id in explicit_ids:
                raise ValueError(f"Duplicate point_id {point.point_id!r} in one commit to group {group_id!r}")
            explicit_ids.add(point.point_id)


class CommitManager:
    """Creates commits.

    Intent (every new vector plus the batch plan) is recorded in a single
    log transaction before the PointStore is touched.  The operation is
    then driven to completion; if the store gives up half way the intent
    stays in the log and :class:`PartialFailureError` is raised.
    """

    def __init__(
        self,
        log: DurableLog,
        driver: OperationDriver,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._log = log
        self._driver = driver
        self._clock = clock or (lambda: datetime.now(UTC))

    async def commit(
        self,
        group_id: str,
        new_points: Sequence[NewPoint],
        message: str = "",
    ) -> CommitInfo:
        """Add *new_points* to *group_id* as a new commit and make it active.

        Raises:
            ValueError: Invalid *new_points* (nothing is written).
            ConflictError: Lost the optimistic-lock race on every attempt;
                the partial work was compensated.
            PartialFailureError: The store stayed unavailable; run ``repair()``.
            DurableLogError: The log failed before any store call.
        """
        validate_points(group_id, new_points)
        pointer = await self._log.ensure_group(group_id)

        op_id = str(uuid.uuid4())
        timestamp = self._clock()
        request = _build_request(group_id, op_id, new_points, message, timestamp)
        op = PendingOperation(
            op_id=op_id,
            op_type=OpType.COMMIT.value,
            group_id=group_id,
            expected_version=pointer.version_counter,
            request=request,
        )
        planned = await self._driver.plan(op, pointer)
        op.request = planned.request
        op.target_commit_hash = planned.target_commit_hash
        await self._log.create_pending_op(op, planned.batches)

        await drive_recorded(self._log, self._driver, op_id, group_id)

        record = await self._log.get_commit_by_op(op_id)
        if record is None:
            # Compensated by a concurrent repair before this call could finish
            raise ConflictError("Commit was rolled back by recovery", group_id=group_id, op_id=op_id)
        logger.info(
            "Committed %s to group %s (%d points, seq %d)",
            record.commit_hash, group_id, len(record.point_ids), record.sequence,
        )
        return CommitInfo.from_record(record)


def _build_request(
    group_id: str,
    op_id: str,
    new_points: Sequence[NewPoint],
    message: str,
    timestamp: datetime,
) -> dict[str, Any]:
    points: list[dict[str, Any]] = []
    for p in new_points:
        point_id = p.point_id or default_point_id(group_id, p.source_doc_id, p.chunk_index)
        vector = [float(x) for x in p.vector]
        points.append({
            "point_id": point_id,
            "vector_ref": make_vector_ref(point_id, op_id),
            "source_doc_id": p.source_doc_id,
            "chunk_index": p.chunk_index,
            "vector": vector,
            "metadata": dict(p.metadata),
            "digest": point_digest(p.source_doc_id, p.chunk_index, vector, p.metadata, point_id=point_id),
        })
    return {
        "message": message,
        "timestamp": timestamp.isoformat(),
        "points": points,
    }

