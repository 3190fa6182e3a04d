"""Vault: synchronous facade over :class:`VaultAsync`."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

from chronovec._vault_async import VaultAsync

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime

    from chronovec.config import EngineConfig, RetentionPolicy
    from chronovec.events import EventBus
    from chronovec.log import DurableLog
    from chronovec.store.protocols import PointStore
    from chronovec.types import (
        CommitInfo,
        GCReport,
        GroupStatus,
        NewPoint,
        RepairReport,
        RollbackInfo,
    )


class Vault:
    """Blocking API backed by a private event loop in a background thread.

    Every method submits the matching :class:`VaultAsync` coroutine to
    the loop and waits for it, so the vault can be used from plain sync
    code, notebooks, or from inside another running event loop.

    Usage::

        with Vault(DurableLog.from_path("log.db"), LocalPointStore(dimension=8)) as v:
            info = v.commit("docs", points, message="initial")
            v.rollback("docs", info.commit_hash)
    """

    def __init__(
        self,
        log: DurableLog,
        store: PointStore,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        *,
        auto_repair: bool = True,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._async = VaultAsync(log, store, config=config, clock=clock)
        try:
            self.startup_report: RepairReport | None = self._run(
                self._async.open(auto_repair=auto_repair)
            )
        except BaseException:
            self._stop_loop()
            raise

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the log and store, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async.close())
        finally:
            self._stop_loop()

    def __enter__(self) -> Vault:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    @property
    def events(self) -> EventBus:
        """The event bus; handlers run on the vault's private loop."""
        return self._async.events

    # ------------------------------------------------------------------
    # Sync wrappers
    # ------------------------------------------------------------------

    def commit(self, group_id: str, new_points: Sequence[NewPoint], message: str = "") -> CommitInfo:
        return self._run(self._async.commit(group_id, new_points, message))

    def rollback(self, group_id: str, target_commit_hash: str) -> RollbackInfo:
        return self._run(self._async.rollback(group_id, target_commit_hash))

    def checkout(self, group_id: str, commit_hash: str) -> RollbackInfo:
        return self._run(self._async.checkout(group_id, commit_hash))

    def history(self, group_id: str, limit: int | None = None) -> list[CommitInfo]:
        return self._run(self._async.history(group_id, limit))

    def status(self, group_id: str) -> GroupStatus:
        return self._run(self._async.status(group_id))

    def repair(self, group_id: str | None = None) -> RepairReport:
        return self._run(self._async.repair(group_id))

    def gc(self, policy: RetentionPolicy | None = None) -> GCReport:
        return self._run(self._async.gc(policy))
