"""PendingOperation and PendingBatch models: the durable intent log.

A ``PendingOperation`` row exists from the moment a commit or rollback
records its intent until every batch of its plan is confirmed applied and
the group pointer is updated. Its ``PendingBatch`` rows are the ordered
``batch_plan``; each carries its own ``applied`` flag so recovery resumes
mid-plan instead of from scratch.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class OpType(str, Enum):
    """Kinds of mutating operation."""

    COMMIT = "COMMIT"
    ROLLBACK = "ROLLBACK"


class OpStatus(str, Enum):
    """Lifecycle of a pending operation."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class BatchKind(str, Enum):
    """What a batch asks of the PointStore."""

    UPSERT = "upsert"
    ACTIVITY = "activity"
    DELETE = "delete"


class PendingOperationBase(SQLModel):
    """Base fields for a pending operation. Subclass with ``table=True`` for a concrete table."""

    op_id: str = Field(primary_key=True)
    op_type: str = Field(index=True)
    group_id: str = Field(index=True)
    target_commit_hash: str | None = Field(default=None)
    status: str = Field(default=OpStatus.PENDING.value, index=True)
    expected_version: int = Field(default=0)
    request: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)  # type: ignore[call-overload]
    aborting: bool = Field(default=False)
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )


class PendingOperation(PendingOperationBase, table=True):
    """Default pending operation table: ``chronovec_pending_operations``."""

    __tablename__ = "chronovec_pending_operations"


class PendingBatchBase(SQLModel):
    """One ordered batch of a pending operation's plan."""

    id: int | None = Field(default=None, primary_key=True)
    op_id: str = Field(index=True)
    seq: int = Field(default=0)
    kind: str = Field(default=BatchKind.ACTIVITY.value)
    entries: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)  # type: ignore[call-overload]
    applied: bool = Field(default=False)


class PendingBatch(PendingBatchBase, table=True):
    """Default pending batch table: ``chronovec_pending_batches``."""

    __tablename__ = "chronovec_pending_batches"
    __table_args__ = (UniqueConstraint("op_id", "seq", name="uq_chronovec_batch_seq"),)
