"""GroupPointer model: per-group active commit plus the CAS version counter."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class GroupPointerBase(SQLModel):
    """Base fields for a group pointer. Subclass with ``table=True`` for a concrete table."""

    group_id: str = Field(primary_key=True)
    active_commit_hash: str | None = Field(default=None)
    head_commit_hash: str | None = Field(default=None)
    version_counter: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )


class GroupPointer(GroupPointerBase, table=True):
    """Default group pointer table: ``chronovec_group_pointers``."""

    __tablename__ = "chronovec_group_pointers"
