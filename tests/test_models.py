"""Tests for the Durable Log SQLModel tables."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from chronovec.models import (
    BatchKind,
    CommitRecord,
    GroupPointer,
    OpStatus,
    OpType,
    PendingBatch,
    PendingOperation,
    PointVersion,
)


@pytest.fixture
async def session():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    factory = async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
    await eng.dispose()


# =========================================================================
# Table names and enums
# =========================================================================


class TestTableNames:
    def test_table_names(self) -> None:
        assert CommitRecord.__tablename__ == "chronovec_commits"
        assert PointVersion.__tablename__ == "chronovec_point_versions"
        assert PendingOperation.__tablename__ == "chronovec_pending_operations"
        assert PendingBatch.__tablename__ == "chronovec_pending_batches"
        assert GroupPointer.__tablename__ == "chronovec_group_pointers"

    def test_enum_values(self) -> None:
        assert OpType.COMMIT.value == "COMMIT"
        assert OpType.ROLLBACK.value == "ROLLBACK"
        assert [s.value for s in OpStatus] == ["PENDING", "IN_PROGRESS", "DONE"]
        assert {k.value for k in BatchKind} == {"upsert", "activity", "delete"}


# =========================================================================
# Defaults
# =========================================================================


class TestDefaults:
    def test_group_pointer_defaults(self) -> None:
        pointer = GroupPointer(group_id="g")
        assert pointer.version_counter == 0
        assert pointer.active_commit_hash is None
        assert pointer.head_commit_hash is None
        assert pointer.created_at.tzinfo is not None

    def test_pending_operation_defaults(self) -> None:
        op = PendingOperation(op_id="op1", op_type=OpType.COMMIT.value, group_id="g")
        assert op.status == OpStatus.PENDING.value
        assert op.aborting is False
        assert op.attempts == 0
        assert op.request == {}

    def test_point_version_key(self) -> None:
        pv = PointVersion(
            vector_ref="r", point_id="p", group_id="g", commit_hash="c",
            source_doc_id="doc", chunk_index=3,
        )
        assert pv.key == ("doc", 3)
        assert pv.is_active is False
        assert pv.deactivated_at is None


# =========================================================================
# Persistence
# =========================================================================


class TestPersistence:
    async def test_commit_roundtrip_keeps_json(self, session: AsyncSession) -> None:
        record = CommitRecord(
            commit_hash="sha256:" + "a" * 64,
            group_id="g",
            op_id="op1",
            message="first",
            point_ids=["p1", "p2"],
            timestamp=datetime(2025, 1, 1, tzinfo=UTC),
        )
        session.add(record)
        await session.commit()

        result = await session.execute(select(CommitRecord))
        loaded = result.scalar_one()
        assert loaded.point_ids == ["p1", "p2"]
        assert loaded.message == "first"
        assert loaded.parent_hash is None

    async def test_commit_op_id_unique(self, session: AsyncSession) -> None:
        session.add(CommitRecord(commit_hash="sha256:" + "a" * 64, group_id="g", op_id="op1"))
        session.add(CommitRecord(commit_hash="sha256:" + "b" * 64, group_id="g", op_id="op1"))
        with pytest.raises(IntegrityError):
            await session.commit()

    async def test_batch_seq_unique_per_op(self, session: AsyncSession) -> None:
        session.add(PendingBatch(op_id="op1", seq=0, kind="upsert", entries=[]))
        session.add(PendingBatch(op_id="op1", seq=0, kind="activity", entries=[]))
        with pytest.raises(IntegrityError):
            await session.commit()

    async def test_batch_entries_roundtrip(self, session: AsyncSession) -> None:
        entries = [{"vector_ref": "r1", "is_active": False}]
        session.add(PendingBatch(op_id="op1", seq=0, kind=BatchKind.ACTIVITY.value, entries=entries))
        await session.commit()

        result = await session.execute(select(PendingBatch))
        batch = result.scalar_one()
        assert batch.entries == entries
        assert batch.applied is False
        assert batch.id is not None
