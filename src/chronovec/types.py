"""Result types: CommitInfo, GroupStatus, RepairReport, GCReport, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chronovec.models import CommitRecord, PendingOperation


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ------------------------------------------------------------------
# Inputs
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NewPoint:
    """One chunk embedding to introduce or revise in a commit.

    Attributes:
        source_doc_id: Document the chunk was cut from.
        chunk_index: Position of the chunk within the document (>= 0).
        vector: Embedding vector, stored only in the PointStore.
        metadata: Extra payload fields stored with the point.
        point_id: Stable logical id; derived from the group, document and
            chunk index when omitted.
    """

    source_doc_id: str
    chunk_index: int
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    point_id: str | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_doc_id, self.chunk_index)


# ------------------------------------------------------------------
# Commits
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CommitInfo:
    """Read-only view of a ``CommitRecord``."""

    commit_hash: str
    group_id: str
    parent_hash: str | None
    base_hash: str | None
    sequence: int
    message: str
    timestamp: datetime
    point_ids: tuple[str, ...] = ()

    @classmethod
    def from_record(cls, record: CommitRecord) -> CommitInfo:
        return cls(
            commit_hash=record.commit_hash,
            group_id=record.group_id,
            parent_hash=record.parent_hash,
            base_hash=record.base_hash,
            sequence=record.sequence,
            message=record.message,
            timestamp=ensure_utc(record.timestamp),  # type: ignore[arg-type]
            point_ids=tuple(record.point_ids),
        )


@dataclass(frozen=True)
class RollbackInfo:
    """Outcome of a rollback.

    ``noop`` is true when the target was already active and nothing was
    recorded.
    """

    group_id: str
    previous_commit_hash: str | None
    active_commit_hash: str
    op_id: str | None = None
    activated: int = 0
    deactivated: int = 0
    noop: bool = False


# ------------------------------------------------------------------
# Operator surface
# ------------------------------------------------------------------


@dataclass(frozen=True)
class PendingOpInfo:
    """Summary of an in-flight operation."""

    op_id: str
    op_type: str
    status: str
    target_commit_hash: str | None
    batches_total: int
    batches_applied: int
    aborting: bool
    attempts: int
    last_error: str | None
    created_at: datetime | None

    @classmethod
    def from_record(
        cls,
        op: PendingOperation,
        *,
        batches_total: int,
        batches_applied: int,
    ) -> PendingOpInfo:
        return cls(
            op_id=op.op_id,
            op_type=op.op_type,
            status=op.status,
            target_commit_hash=op.target_commit_hash,
            batches_total=batches_total,
            batches_applied=batches_applied,
            aborting=op.aborting,
            attempts=op.attempts,
            last_error=op.last_error,
            created_at=ensure_utc(op.created_at),
        )


@dataclass(frozen=True)
class GroupStatus:
    """What ``status(group_id)`` reports."""

    group_id: str
    active_commit_hash: str | None
    head_commit_hash: str | None
    version_counter: int
    last_commit: CommitInfo | None
    pending_ops: list[PendingOpInfo] = field(default_factory=list)
    inactive_count: int = 0


@dataclass(frozen=True)
class RepairOutcome:
    """Result of re-driving one pending operation.

    ``status`` is one of ``completed``, ``compensated``, ``exhausted``
    (retries ran out, manual intervention needed) or ``failed``.
    """

    op_id: str
    group_id: str
    op_type: str
    status: str
    batches_applied: int = 0
    error: str | None = None


@dataclass
class RepairReport:
    """Result of ``repair()``."""

    outcomes: list[RepairOutcome] = field(default_factory=list)

    @property
    def resumed(self) -> int:
        return len(self.outcomes)

    @property
    def completed(self) -> list[RepairOutcome]:
        return [o for o in self.outcomes if o.status in ("completed", "compensated")]

    @property
    def needs_attention(self) -> list[RepairOutcome]:
        """Operations that are still pending after this repair pass."""
        return [o for o in self.outcomes if o.status in ("exhausted", "failed")]

    @property
    def clean(self) -> bool:
        return not self.needs_attention


@dataclass
class GCReport:
    """Result of ``gc(retention_policy)``."""

    mode: str
    dry_run: bool = False
    collected: dict[str, list[str]] = field(default_factory=dict)
    """Reclaimed ``vector_ref``s per group (candidates when ``dry_run``)."""

    commits_deleted: list[str] = field(default_factory=list)
    skipped_groups: list[str] = field(default_factory=list)
    """Groups left alone because an operation was in flight."""

    protected_count: int = 0

    @property
    def total_collected(self) -> int:
        return sum(len(refs) for refs in self.collected.values())
