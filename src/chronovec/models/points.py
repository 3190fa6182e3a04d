"""PointVersion model: the log-side mirror of one versioned point.

The vector itself lives in the PointStore under ``vector_ref``; this row
records which commit introduced it, which chunk it belongs to, and
whether the store has been told it is active.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel


class PointVersionBase(SQLModel):
    """Base fields for a point version. Subclass with ``table=True`` for a concrete table."""

    vector_ref: str = Field(primary_key=True)
    point_id: str = Field(index=True)
    group_id: str = Field(index=True)
    commit_hash: str = Field(index=True)
    source_doc_id: str
    chunk_index: int = Field(default=0, ge=0)
    is_active: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    deactivated_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )

    @property
    def key(self) -> tuple[str, int]:
        """The ``(source_doc_id, chunk_index)`` slot this version fills."""
        return (self.source_doc_id, self.chunk_index)


class PointVersion(PointVersionBase, table=True):
    """Default point version table: ``chronovec_point_versions``."""

    __tablename__ = "chronovec_point_versions"
    __table_args__ = (
        Index("ix_chronovec_point_versions_slot", "group_id", "source_doc_id", "chunk_index"),
    )
