"""DurableLog: crash-safe, transactional storage for commits, points, and intent."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import event, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import select

from chronovec.exceptions import DurableLogError
from chronovec.models import (
    BatchKind,
    CommitRecord,
    GroupPointer,
    OpStatus,
    PendingBatch,
    PendingOperation,
    PointVersion,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_IN_CLAUSE_CHUNK = 500
"""Keep ``IN (...)`` lists well under SQLite's bound-parameter limit."""

_LIVE_STATUSES = (OpStatus.PENDING, OpStatus.IN_PROGRESS)


def _chunks(items: Sequence[Any], size: int = _IN_CLAUSE_CHUNK) -> Iterable[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class FinalizeOutcome(Enum):
    """Result of :meth:`DurableLog.finalize_operation`."""

    FINALIZED = "finalized"
    CAS_REJECTED = "cas_rejected"
    GONE = "gone"
    """The pending operation no longer exists (finalized elsewhere)."""


class _CasRejected(Exception):
    """Internal: abort the finalize transaction without side effects."""


class DurableLog:
    """SQL-backed log of commits, point versions, pending operations and group pointers.

    Every public method runs in exactly one local transaction, so each call
    is atomic.  There is no atomicity across calls and none with the
    PointStore; that gap is what ``PendingOperation`` rows cover.

    Any ``SQLAlchemyError`` or ``OSError`` surfaces as
    :class:`~chronovec.exceptions.DurableLogError`.

    Usage::

        log = DurableLog.from_path("/var/lib/chronovec/log.db")
        await log.open()
        pointer = await log.ensure_group("docs")
        await log.close()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        owns_engine: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self._owns_engine = owns_engine
        self._clock = clock or (lambda: datetime.now(UTC))
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_url(cls, url: str, *, clock: Callable[[], datetime] | None = None) -> DurableLog:
        """Build a log over a new engine for *url* (any async SQLAlchemy URL)."""
        engine = create_async_engine(url, echo=False)
        if engine.dialect.name == "sqlite":
            _install_sqlite_pragmas(engine)
        return cls(engine, owns_engine=True, clock=clock)

    @classmethod
    def from_path(cls, path: str | Path, *, clock: Callable[[], datetime] | None = None) -> DurableLog:
        """Build a log over a SQLite file at *path* (WAL, synchronous=FULL)."""
        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls.from_url(f"sqlite+aiosqlite:///{db_path}", clock=clock)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the log tables if they do not exist."""
        tables = [
            CommitRecord.__table__,  # type: ignore[attr-defined]
            PointVersion.__table__,  # type: ignore[attr-defined]
            PendingOperation.__table__,  # type: ignore[attr-defined]
            PendingBatch.__table__,  # type: ignore[attr-defined]
            GroupPointer.__table__,  # type: ignore[attr-defined]
        ]
        try:
            async with self._engine.begin() as conn:
                for table in tables:
                    await conn.run_sync(lambda c, t=table: t.create(c, checkfirst=True))
        except (SQLAlchemyError, OSError) as exc:
            raise DurableLogError(f"Cannot initialise durable log: {exc}") from exc

    async def close(self) -> None:
        """Dispose the engine if this log created it."""
        if self._owns_engine:
            await self._engine.dispose()

    @asynccontextmanager
    async def _transaction(
        self,
        *,
        group_id: str | None = None,
        op_id: str | None = None,
    ) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise DurableLogError(
                f"Durable log failure: {exc}", group_id=group_id, op_id=op_id
            ) from exc

    # ------------------------------------------------------------------
    # Group pointers
    # ------------------------------------------------------------------

    async def ensure_group(self, group_id: str) -> GroupPointer:
        """Return the pointer for *group_id*, creating it at version 0 if absent."""
        try:
            async with self._transaction(group_id=group_id) as session:
                pointer = await session.get(GroupPointer, group_id)
                if pointer is not None:
                    return pointer
                now = self._clock()
                pointer = GroupPointer(group_id=group_id, created_at=now, updated_at=now)
                session.add(pointer)
            logger.info("Initialised group %s", group_id)
            return pointer
        except DurableLogError as exc:
            # Lost a creation race with another writer
            if not isinstance(exc.__cause__, IntegrityError):
                raise
        pointer = await self.get_group_pointer(group_id)
        if pointer is None:
            raise DurableLogError("Group pointer vanished after creation race", group_id=group_id)
        return pointer

    async def get_group_pointer(self, group_id: str) -> GroupPointer | None:
        async with self._transaction(group_id=group_id) as session:
            return await session.get(GroupPointer, group_id)

    async def list_groups(self) -> list[str]:
        async with self._transaction() as session:
            result = await session.execute(
                select(GroupPointer.group_id).order_by(GroupPointer.group_id)  # type: ignore[arg-type]
            )
            return list(result.scalars().all())

    async def cas_group_pointer(
        self,
        group_id: str,
        expected_version: int,
        *,
        active_commit_hash: str | None,
        head_commit_hash: str | None,
    ) -> bool:
        """Write a new pointer iff ``version_counter`` still equals *expected_version*."""
        async with self._transaction(group_id=group_id) as session:
            return await self._cas(
                session, group_id, expected_version, active_commit_hash, head_commit_hash, self._clock()
            )

    @staticmethod
    async def _cas(
        session: AsyncSession,
        group_id: str,
        expected_version: int,
        active_commit_hash: str | None,
        head_commit_hash: str | None,
        now: datetime,
    ) -> bool:
        result = await session.execute(
            update(GroupPointer)
            .where(
                GroupPointer.group_id == group_id,  # type: ignore[arg-type]
                GroupPointer.version_counter == expected_version,  # type: ignore[arg-type]
            )
            .values(
                active_commit_hash=active_commit_hash,
                head_commit_hash=head_commit_hash,
                version_counter=expected_version + 1,
                updated_at=now,
            )
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def append_commit(self, record: CommitRecord) -> CommitRecord:
        """Insert *record* unless a commit with the same ``op_id`` exists."""
        async with self._transaction(group_id=record.group_id, op_id=record.op_id) as session:
            return await self._append_commit(session, record)

    @staticmethod
    async def _append_commit(session: AsyncSession, record: CommitRecord) -> CommitRecord:
        result = await session.execute(
            select(CommitRecord).where(CommitRecord.op_id == record.op_id)  # type: ignore[arg-type]
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing
        session.add(record)
        return record

    async def get_commit(self, commit_hash: str) -> CommitRecord | None:
        async with self._transaction() as session:
            return await session.get(CommitRecord, commit_hash)

    async def get_commit_by_op(self, op_id: str) -> CommitRecord | None:
        async with self._transaction(op_id=op_id) as session:
            result = await session.execute(
                select(CommitRecord).where(CommitRecord.op_id == op_id)  # type: ignore[arg-type]
            )
            return result.scalar_one_or_none()

    async def list_commits(self, group_id: str, limit: int | None = None) -> list[CommitRecord]:
        """Commits of *group_id*, newest first."""
        async with self._transaction(group_id=group_id) as session:
            stmt = (
                select(CommitRecord)
                .where(CommitRecord.group_id == group_id)  # type: ignore[arg-type]
                .order_by(CommitRecord.sequence.desc())  # type: ignore[attr-defined]
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def commits_by_hashes(self, commit_hashes: Sequence[str]) -> dict[str, CommitRecord]:
        found: dict[str, CommitRecord] = {}
        async with self._transaction() as session:
            for chunk in _chunks(list(commit_hashes)):
                result = await session.execute(
                    select(CommitRecord).where(
                        CommitRecord.commit_hash.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                for record in result.scalars().all():
                    found[record.commit_hash] = record
        return found

    async def delete_commits(self, commit_hashes: Sequence[str]) -> int:
        count = 0
        async with self._transaction() as session:
            for chunk in _chunks(list(commit_hashes)):
                result = await session.execute(
                    sa_delete(CommitRecord).where(
                        CommitRecord.commit_hash.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                count += result.rowcount  # type: ignore[attr-defined]
        return count

    # ------------------------------------------------------------------
    # Point versions
    # ------------------------------------------------------------------

    async def upsert_point_version(self, version: PointVersion) -> PointVersion:
        """Insert or replace a point version row keyed by ``vector_ref``."""
        async with self._transaction(group_id=version.group_id) as session:
            return await session.merge(version)

    async def point_versions_for_commits(
        self,
        group_id: str,
        commit_hashes: Sequence[str],
    ) -> list[PointVersion]:
        rows: list[PointVersion] = []
        async with self._transaction(group_id=group_id) as session:
            for chunk in _chunks(list(commit_hashes)):
                result = await session.execute(
                    select(PointVersion).where(
                        PointVersion.group_id == group_id,  # type: ignore[arg-type]
                        PointVersion.commit_hash.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                rows.extend(result.scalars().all())
        return rows

    async def point_versions_for_keys(
        self,
        group_id: str,
        keys: Iterable[tuple[str, int]],
    ) -> list[PointVersion]:
        """Every version, active or not, filling any of the ``(doc, chunk)`` *keys*."""
        wanted = set(keys)
        if not wanted:
            return []
        doc_ids = sorted({doc for doc, _ in wanted})
        rows: list[PointVersion] = []
        async with self._transaction(group_id=group_id) as session:
            for chunk in _chunks(doc_ids):
                result = await session.execute(
                    select(PointVersion).where(
                        PointVersion.group_id == group_id,  # type: ignore[arg-type]
                        PointVersion.source_doc_id.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                rows.extend(pv for pv in result.scalars().all() if pv.key in wanted)
        return rows

    async def point_versions_by_refs(self, vector_refs: Sequence[str]) -> list[PointVersion]:
        rows: list[PointVersion] = []
        async with self._transaction() as session:
            for chunk in _chunks(list(vector_refs)):
                result = await session.execute(
                    select(PointVersion).where(
                        PointVersion.vector_ref.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                rows.extend(result.scalars().all())
        return rows

    async def active_point_versions(self, group_id: str) -> list[PointVersion]:
        async with self._transaction(group_id=group_id) as session:
            result = await session.execute(
                select(PointVersion).where(
                    PointVersion.group_id == group_id,  # type: ignore[arg-type]
                    PointVersion.is_active.is_(True),  # type: ignore[attr-defined]
                )
            )
            return list(result.scalars().all())

    async def inactive_point_versions(
        self,
        group_id: str,
        older_than: datetime,
    ) -> list[PointVersion]:
        """Inactive versions of *group_id* deactivated at or before *older_than*."""
        async with self._transaction(group_id=group_id) as session:
            result = await session.execute(
                select(PointVersion).where(
                    PointVersion.group_id == group_id,  # type: ignore[arg-type]
                    PointVersion.is_active.is_(False),  # type: ignore[attr-defined]
                    PointVersion.deactivated_at <= older_than,  # type: ignore[operator]
                )
            )
            return list(result.scalars().all())

    async def count_inactive(self, group_id: str) -> int:
        async with self._transaction(group_id=group_id) as session:
            result = await session.execute(
                select(func.count()).where(
                    PointVersion.group_id == group_id,  # type: ignore[arg-type]
                    PointVersion.is_active.is_(False),  # type: ignore[attr-defined]
                )
            )
            return int(result.scalar_one())

    async def version_counts_by_commit(self, group_id: str) -> dict[str, int]:
        async with self._transaction(group_id=group_id) as session:
            result = await session.execute(
                select(PointVersion.commit_hash, func.count())  # type: ignore[call-overload]
                .where(PointVersion.group_id == group_id)  # type: ignore[arg-type]
                .group_by(PointVersion.commit_hash)
            )
            return {commit_hash: int(n) for commit_hash, n in result.all()}

    async def delete_point_versions(self, vector_refs: Sequence[str]) -> int:
        count = 0
        async with self._transaction() as session:
            for chunk in _chunks(list(vector_refs)):
                result = await session.execute(
                    sa_delete(PointVersion).where(
                        PointVersion.vector_ref.in_(chunk),  # type: ignore[attr-defined]
                    )
                )
                count += result.rowcount  # type: ignore[attr-defined]
        return count

    # ------------------------------------------------------------------
    # Pending operations
    # ------------------------------------------------------------------

    async def create_pending_op(
        self,
        op: PendingOperation,
        batches: Sequence[PendingBatch],
    ) -> PendingOperation:
        """Durably record intent: the operation row plus its full batch plan."""
        op.created_at = op.updated_at = self._clock()
        async with self._transaction(group_id=op.group_id, op_id=op.op_id) as session:
            session.add(op)
            for batch in batches:
                batch.op_id = op.op_id
                session.add(batch)
        logger.info(
            "Recorded %s %s for group %s (%d batches)",
            op.op_type, op.op_id, op.group_id, len(batches),
        )
        return op

    async def get_pending_op(self, op_id: str) -> PendingOperation | None:
        async with self._transaction(op_id=op_id) as session:
            return await session.get(PendingOperation, op_id)

    async def read_pending_ops(
        self,
        status: OpStatus | Iterable[OpStatus] | None = None,
        *,
        group_id: str | None = None,
    ) -> list[PendingOperation]:
        """Pending operations by status (default: PENDING and IN_PROGRESS), oldest first."""
        if status is None:
            statuses = [s.value for s in _LIVE_STATUSES]
        elif isinstance(status, OpStatus):
            statuses = [status.value]
        else:
            statuses = [s.value for s in status]

        async with self._transaction(group_id=group_id) as session:
            stmt = select(PendingOperation).where(
                PendingOperation.status.in_(statuses),  # type: ignore[attr-defined]
            )
            if group_id is not None:
                stmt = stmt.where(PendingOperation.group_id == group_id)  # type: ignore[arg-type]
            result = await session.execute(
                stmt.order_by(PendingOperation.created_at.asc())  # type: ignore[attr-defined]
            )
            return list(result.scalars().all())

    async def pending_ops_for_group(self, group_id: str) -> list[PendingOperation]:
        """In-flight operations of *group_id*, oldest first."""
        return await self.read_pending_ops(group_id=group_id)

    async def update_pending_op_status(
        self,
        op_id: str,
        status: OpStatus,
        *,
        error: str | None = None,
        count_attempt: bool = False,
    ) -> None:
        async with self._transaction(op_id=op_id) as session:
            op = await session.get(PendingOperation, op_id)
            if op is None:
                return
            op.status = status.value
            op.last_error = error
            if count_attempt:
                op.attempts += 1
            op.updated_at = self._clock()

    async def delete_pending_op(self, op_id: str) -> None:
        async with self._transaction(op_id=op_id) as session:
            await self._delete_op(session, op_id)

    @staticmethod
    async def _delete_op(session: AsyncSession, op_id: str) -> None:
        await session.execute(
            sa_delete(PendingBatch).where(PendingBatch.op_id == op_id)  # type: ignore[arg-type]
        )
        await session.execute(
            sa_delete(PendingOperation).where(PendingOperation.op_id == op_id)  # type: ignore[arg-type]
        )

    async def get_batches(self, op_id: str, *, pending_only: bool = False) -> list[PendingBatch]:
        """Batches of *op_id* in plan order."""
        async with self._transaction(op_id=op_id) as session:
            stmt = select(PendingBatch).where(PendingBatch.op_id == op_id)  # type: ignore[arg-type]
            if pending_only:
                stmt = stmt.where(PendingBatch.applied.is_(False))  # type: ignore[attr-defined]
            result = await session.execute(stmt.order_by(PendingBatch.seq.asc()))  # type: ignore[attr-defined]
            return list(result.scalars().all())

    async def replace_plan(
        self,
        op: PendingOperation,
        batches: Sequence[PendingBatch],
    ) -> PendingOperation:
        """Swap *op*'s batch plan and planning fields for a freshly derived one."""
        async with self._transaction(group_id=op.group_id, op_id=op.op_id) as session:
            stored = await session.get(PendingOperation, op.op_id)
            if stored is None:
                raise DurableLogError(
                    "Cannot re-plan a finished operation", group_id=op.group_id, op_id=op.op_id
                )
            await session.execute(
                sa_delete(PendingBatch).where(PendingBatch.op_id == op.op_id)  # type: ignore[arg-type]
            )
            await session.flush()
            stored.target_commit_hash = op.target_commit_hash
            stored.expected_version = op.expected_version
            stored.request = dict(op.request)
            stored.aborting = op.aborting
            stored.updated_at = self._clock()
            for batch in batches:
                batch.op_id = op.op_id
                session.add(batch)
        logger.debug("Re-planned %s at version %d (%d batches)", op.op_id, op.expected_version, len(batches))
        return stored

    async def mark_batch_applied(self, batch: PendingBatch, group_id: str) -> None:
        """Flag *batch* applied and mirror its effect into ``PointVersion`` rows."""
        async with self._transaction(group_id=group_id, op_id=batch.op_id) as session:
            kind = BatchKind(batch.kind)
            if kind is BatchKind.UPSERT:
                for entry in batch.entries:
                    await session.merge(_version_from_upsert(entry, group_id, self._clock()))
            elif kind is BatchKind.ACTIVITY:
                now = self._clock()
                on = [e["vector_ref"] for e in batch.entries if e["is_active"]]
                off = [e["vector_ref"] for e in batch.entries if not e["is_active"]]
                for chunk in _chunks(on):
                    await session.execute(
                        update(PointVersion)
                        .where(PointVersion.vector_ref.in_(chunk))  # type: ignore[attr-defined]
                        .values(is_active=True, deactivated_at=None)
                    )
                for chunk in _chunks(off):
                    await session.execute(
                        update(PointVersion)
                        .where(
                            PointVersion.vector_ref.in_(chunk),  # type: ignore[attr-defined]
                            PointVersion.is_active.is_(True),  # type: ignore[attr-defined]
                        )
                        .values(is_active=False, deactivated_at=now)
                    )
            else:
                refs = [e["vector_ref"] for e in batch.entries]
                for chunk in _chunks(refs):
                    await session.execute(
                        sa_delete(PointVersion).where(
                            PointVersion.vector_ref.in_(chunk),  # type: ignore[attr-defined]
                        )
                    )

            await session.execute(
                update(PendingBatch)
                .where(PendingBatch.id == batch.id)  # type: ignore[arg-type]
                .values(applied=True)
            )
            await session.execute(
                update(PendingOperation)
                .where(PendingOperation.op_id == batch.op_id)  # type: ignore[arg-type]
                .values(updated_at=self._clock())
            )

    async def finalize_operation(
        self,
        op_id: str,
        group_id: str,
        expected_version: int,
        *,
        active_commit_hash: str | None,
        head_commit_hash: str | None,
        commit: CommitRecord | None = None,
    ) -> FinalizeOutcome:
        """Append *commit* (idempotent by ``op_id``), CAS the pointer and clear the op.

        All three happen in one transaction: on CAS rejection nothing is
        written.
        """
        try:
            async with self._transaction(group_id=group_id, op_id=op_id) as session:
                if await session.get(PendingOperation, op_id) is None:
                    return FinalizeOutcome.GONE
                if commit is not None:
                    await self._append_commit(session, commit)
                swapped = await self._cas(
                    session, group_id, expected_version, active_commit_hash, head_commit_hash, self._clock()
                )
                if not swapped:
                    raise _CasRejected
                await self._delete_op(session, op_id)
        except _CasRejected:
            return FinalizeOutcome.CAS_REJECTED
        return FinalizeOutcome.FINALIZED


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _version_from_upsert(entry: dict[str, Any], group_id: str, now: datetime) -> PointVersion:
    payload = entry["payload"]
    return PointVersion(
        vector_ref=entry["vector_ref"],
        point_id=entry["point_id"],
        group_id=group_id,
        commit_hash=payload["commit_hash"],
        source_doc_id=entry["source_doc_id"],
        chunk_index=entry["chunk_index"],
        is_active=bool(payload.get("is_active", True)),
        created_at=now,
        deactivated_at=None,
    )


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
        # Let the "begin" listener below control transaction start
        dbapi_connection.isolation_level = None  # type: ignore[attr-defined]
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        result = cursor.fetchone()
        if result and result[0].lower() not in ("wal", "memory"):
            logger.warning("WAL mode not active, got: %s", result[0])
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        # Take the write lock up front: a deferred read-then-write
        # transaction fails with SQLITE_BUSY if another writer got in first
        conn.exec_driver_sql("BEGIN IMMEDIATE")
