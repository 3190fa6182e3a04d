"""CommitRecord model: one immutable row per commit in a group's chain.

Provides ``CommitRecordBase`` (non-table base) and ``CommitRecord``
(concrete table).
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class CommitRecordBase(SQLModel):
    """Base fields for a commit. Subclass with ``table=True`` for a concrete table."""

    commit_hash: str = Field(primary_key=True)
    group_id: str = Field(index=True)
    parent_hash: str | None = Field(default=None)
    base_hash: str | None = Field(default=None)
    sequence: int = Field(default=1, index=True)
    op_id: str = Field(unique=True)
    message: str = Field(default="")
    point_ids: list[str] = Field(default_factory=list, sa_type=JSON)  # type: ignore[call-overload]
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )


class CommitRecord(CommitRecordBase, table=True):
    """Default commit table: ``chronovec_commits``."""

    __tablename__ = "chronovec_commits"
