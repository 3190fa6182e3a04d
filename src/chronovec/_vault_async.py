"""VaultAsync: async facade wiring the Durable Log, PointStore, engine and events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chronovec.config import EngineConfig, RetentionPolicy
from chronovec.engine import (
    CommitManager,
    GarbageCollector,
    OperationDriver,
    RecoveryScanner,
    RollbackEngine,
)
from chronovec.events import EventBus, EventType, VaultEvent
from chronovec.exceptions import NotFoundError
from chronovec.store.types import PAYLOAD_FIELDS
from chronovec.types import CommitInfo, GroupStatus, PendingOpInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from chronovec.log import DurableLog
    from chronovec.store.protocols import PointStore
    from chronovec.types import GCReport, NewPoint, RepairReport, RollbackInfo

logger = logging.getLogger(__name__)


class VaultAsync:
    """Async facade: versioned commits, rollback, recovery and GC over a PointStore.

    The Durable Log is the source of truth for history, the active commit
    of each group, and in-flight intent.  The PointStore only holds
    vectors and their ``is_active`` flag.

    Usage::

        log = DurableLog.from_path("/var/lib/chronovec/log.db")
        store = LocalPointStore(dimension=384)
        async with VaultAsync(log, store) as vault:
            info = await vault.commit("docs", points, message="ingest v2")
            await vault.rollback("docs", previous_hash)
    """

    def __init__(
        self,
        log: DurableLog,
        store: PointStore,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._log = log
        self._store = store
        self._config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._closed = False

        self._event_bus = EventBus()
        self._driver = OperationDriver(log, store, self._config)
        self._commits = CommitManager(log, self._driver, self._clock)
        self._rollbacks = RollbackEngine(log, self._driver)
        self._recovery = RecoveryScanner(log, self._driver, self._config, self._event_bus)
        self._gc = GarbageCollector(log, store, self._config, self._clock, self._event_bus)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, *, auto_repair: bool = True) -> RepairReport | None:
        """Create log tables, connect the store and create payload indexes.

        With *auto_repair* the recovery scan runs before the vault is used
        and its report is returned.
        """
        await self._log.open()
        await self._store.connect()
        for field_name, field_type in PAYLOAD_FIELDS.items():
            await self._store.create_index(field_name, field_type)

        if not auto_repair:
            return None
        report = await self._recovery.repair()
        if not report.clean:
            logger.warning(
                "%d operation(s) still need attention after start-up repair",
                len(report.needs_attention),
            )
        return report

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._store.close()
        await self._log.close()

    async def __aenter__(self) -> VaultAsync:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventBus:
        return self._event_bus

    @property
    def log(self) -> DurableLog:
        return self._log

    @property
    def store(self) -> PointStore:
        return self._store

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------

    async def commit(
        self,
        group_id: str,
        new_points: Sequence[NewPoint],
        message: str = "",
    ) -> CommitInfo:
        """Record *new_points* as a new commit of *group_id* and make it active."""
        info = await self._commits.commit(group_id, new_points, message)
        await self._event_bus.emit(
            VaultEvent(
                event_type=EventType.COMMITTED,
                group_id=group_id,
                commit_hash=info.commit_hash,
                details={"points": len(info.point_ids), "sequence": info.sequence},
            )
        )
        return info

    async def rollback(self, group_id: str, target_commit_hash: str) -> RollbackInfo:
        """Make *target_commit_hash* the active commit of *group_id*."""
        info = await self._rollbacks.rollback(group_id, target_commit_hash)
        if not info.noop:
            await self._event_bus.emit(
                VaultEvent(
                    event_type=EventType.ROLLED_BACK,
                    group_id=group_id,
                    commit_hash=info.active_commit_hash,
                    op_id=info.op_id,
                    details={
                        "previous": info.previous_commit_hash,
                        "activated": info.activated,
                        "deactivated": info.deactivated,
                    },
                )
            )
        return info

    async def checkout(self, group_id: str, commit_hash: str) -> RollbackInfo:
        """Alias of :meth:`rollback`."""
        return await self.rollback(group_id, commit_hash)

    async def history(self, group_id: str, limit: int | None = None) -> list[CommitInfo]:
        """Commits of *group_id*, newest first."""
        return await self._rollbacks.history(group_id, limit)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def status(self, group_id: str) -> GroupStatus:
        """Active commit, chain head, CAS version and in-flight operations of *group_id*."""
        pointer = await self._log.get_group_pointer(group_id)
        if pointer is None:
            raise NotFoundError("Unknown group", group_id=group_id)

        last = await self._log.list_commits(group_id, limit=1)
        pending: list[PendingOpInfo] = []
        for op in await self._log.pending_ops_for_group(group_id):
            batches = await self._log.get_batches(op.op_id)
            pending.append(
                PendingOpInfo.from_record(
                    op,
                    batches_total=len(batches),
                    batches_applied=sum(1 for b in batches if b.applied),
                )
            )
        return GroupStatus(
            group_id=group_id,
            active_commit_hash=pointer.active_commit_hash,
            head_commit_hash=pointer.head_commit_hash,
            version_counter=pointer.version_counter,
            last_commit=CommitInfo.from_record(last[0]) if last else None,
            pending_ops=pending,
            inactive_count=await self._log.count_inactive(group_id),
        )

    async def repair(self, group_id: str | None = None) -> RepairReport:
        """Re-drive every pending operation (of *group_id*, if given)."""
        return await self._recovery.repair(group_id)

    async def gc(self, policy: RetentionPolicy | None = None) -> GCReport:
        """Reclaim inactive versions outside *policy*'s retention window."""
        return await self._gc.collect(policy or RetentionPolicy())
