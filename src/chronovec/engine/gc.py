"""GarbageCollector: reclaim inactive point versions outside the retention window."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chronovec.engine.planning import History, load_snapshot
from chronovec.events import EventType, VaultEvent
from chronovec.exceptions import (
    CapabilityNotSupportedError,
    ChronovecError,
    NotFoundError,
    StoreUnavailableError,
)
from chronovec.retry import call_with_retry
from chronovec.store.protocols import SupportsArchive
from chronovec.types import GCReport

if TYPE_CHECKING:
    from collections.abc import Callable

    from chronovec.config import EngineConfig, RetentionPolicy
    from chronovec.events import EventBus
    from chronovec.log import DurableLog
    from chronovec.models import GroupPointer
    from chronovec.store.protocols import PointStore
    from chronovec.store.types import StoreResult

logger = logging.getLogger(__name__)


class GarbageCollector:
    """Deletes or archives point versions no retained commit can reach.

    A version is a candidate when it has been inactive for at least
    ``policy.min_age``.  Versions reachable from the active commit, the
    chain head, or any of the newest ``policy.protected_depth`` commits
    are never collected.  Groups with an operation in flight are skipped.
    Store writes happen first; log rows are removed only after the store
    acknowledged the batch.
    """

    def __init__(
        self,
        log: DurableLog,
        store: PointStore,
        config: EngineConfig,
        clock: Callable[[], datetime] | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._log = log
        self._store = store
        self._config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._events = events

    async def collect(self, policy: RetentionPolicy) -> GCReport:
        """Run one collection pass under *policy*.

        Raises:
            CapabilityNotSupportedError: ``mode="archive"`` on a store
                without ``SupportsArchive``.
            NotFoundError: ``policy.group_id`` names an unknown group.
            StoreUnavailableError: A store batch failed after retries;
                that batch's log rows are kept.
        """
        if policy.mode == "archive" and not isinstance(self._store, SupportsArchive):
            raise CapabilityNotSupportedError(
                f"{self._store.name} does not support archiving", group_id=policy.group_id
            )

        if policy.group_id is not None:
            if await self._log.get_group_pointer(policy.group_id) is None:
                raise NotFoundError("Unknown group", group_id=policy.group_id)
            groups = [policy.group_id]
        else:
            groups = await self._log.list_groups()

        report = GCReport(mode=policy.mode, dry_run=policy.dry_run)
        cutoff = self._clock() - policy.min_age
        for group_id in groups:
            await self._collect_group(group_id, policy, cutoff, report)

        logger.info(
            "GC %s%s: %d versions from %d groups, %d commits removed, %d groups skipped",
            policy.mode,
            " (dry run)" if policy.dry_run else "",
            report.total_collected,
            len(report.collected),
            len(report.commits_deleted),
            len(report.skipped_groups),
        )
        return report

    async def _collect_group(
        self,
        group_id: str,
        policy: RetentionPolicy,
        cutoff: datetime,
        report: GCReport,
    ) -> None:
        if await self._log.pending_ops_for_group(group_id):
            logger.warning("Skipping group %s: an operation is in flight", group_id)
            report.skipped_groups.append(group_id)
            return

        pointer = await self._log.get_group_pointer(group_id)
        if pointer is None:
            return
        history = await History.load(self._log, group_id)
        protected_commits = _protected_commits(pointer, history, policy.protected_depth)

        protected_refs: set[str] = set()
        for commit_hash in protected_commits:
            snapshot = await load_snapshot(self._log, history, group_id, commit_hash)
            protected_refs |= snapshot.refs
        report.protected_count += len(protected_refs)

        candidates = sorted(
            pv.vector_ref
            for pv in await self._log.inactive_point_versions(group_id, cutoff)
            if pv.vector_ref not in protected_refs
        )
        if not candidates:
            return
        if policy.dry_run:
            report.collected[group_id] = candidates
            return

        collected: list[str] = []
        size = self._config.batch_size
        for i in range(0, len(candidates), size):
            chunk = candidates[i : i + size]
            if await self._log.pending_ops_for_group(group_id):
                logger.warning("Stopping GC of group %s: an operation started", group_id)
                report.skipped_groups.append(group_id)
                break
            await self._reclaim_with_retry(chunk, policy.mode, group_id)
            await self._log.delete_point_versions(chunk)
            collected.extend(chunk)
            logger.debug("Reclaimed %d versions of group %s", len(chunk), group_id)

        if collected:
            report.collected[group_id] = collected
            report.commits_deleted.extend(
                await self._prune_commits(group_id, pointer, protected_commits)
            )
            if self._events is not None:
                await self._events.emit(
                    VaultEvent(
                        event_type=EventType.POINTS_COLLECTED,
                        group_id=group_id,
                        details={"mode": policy.mode, "count": len(collected)},
                    )
                )

    async def _reclaim_with_retry(self, ids: list[str], mode: str, group_id: str) -> None:
        try:
            await call_with_retry(self._config.store_retry, self._reclaim, ids, mode, group_id)
        except ChronovecError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(
                f"{self._store.name} failed to reclaim {len(ids)} versions: {exc}", group_id=group_id
            ) from exc

    async def _reclaim(self, ids: list[str], mode: str, group_id: str) -> StoreResult:
        if mode == "archive":
            result = await self._store.archive_points(ids)  # type: ignore[attr-defined]
        else:
            result = await self._store.delete_points(ids)
        if not result.ok:
            raise StoreUnavailableError(
                f"{self._store.name} rejected {len(result.errors)} of {len(ids)} ids: {result.errors[0]}",
                group_id=group_id,
            )
        return result

    async def _prune_commits(
        self,
        group_id: str,
        pointer: GroupPointer,
        protected_commits: set[str],
    ) -> list[str]:
        """Delete commit records left with no versions, newest first.

        A commit is kept while any surviving commit builds on it, so every
        remaining lineage stays walkable.
        """
        history = await History.load(self._log, group_id)
        counts = await self._log.version_counts_by_commit(group_id)
        keep = protected_commits | {pointer.active_commit_hash, pointer.head_commit_hash}

        survivors = {c.commit_hash: c for c in history.newest()}
        doomed: list[str] = []
        for commit in history.newest():
            if commit.commit_hash in keep or counts.get(commit.commit_hash, 0) > 0:
                continue
            if any(s.base_hash == commit.commit_hash for s in survivors.values()):
                continue
            del survivors[commit.commit_hash]
            doomed.append(commit.commit_hash)

        if doomed:
            await self._log.delete_commits(doomed)
            logger.info("Removed %d empty commits from group %s", len(doomed), group_id)
        return doomed


def _protected_commits(pointer: GroupPointer, history: History, depth: int) -> set[str]:
    protected = {c.commit_hash for c in history.newest(depth)}
    for commit_hash in (pointer.active_commit_hash, pointer.head_commit_hash):
        if commit_hash is not None:
            protected.add(commit_hash)
    return protected
