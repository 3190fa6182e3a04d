"""Plan computation for commits, rollbacks and their compensation.

Every planner derives a complete batch plan from three inputs only: the
operation's ``request``, the current group pointer, and the PointVersion
mirror in the Durable Log.  The only thing carried over from an earlier
plan of the same operation is the set of refs it may have sent without
recording, so re-planning after a lost CAS race or a crash always
converges on the state the *current* pointer calls for.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from chronovec.hashing import compute_commit_hash
from chronovec.models import BatchKind, OpType, PendingBatch

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from chronovec.log import DurableLog
    from chronovec.models import CommitRecord, GroupPointer, PointVersion

Slot = tuple[str, int]


@dataclass
class PlannedOp:
    """A freshly derived plan for one pending operation."""

    target_commit_hash: str | None
    expected_version: int
    request: dict[str, Any]
    batches: list[PendingBatch] = field(default_factory=list)


# ------------------------------------------------------------------
# History and reachable sets
# ------------------------------------------------------------------


class History:
    """Every commit record of one group, indexed by hash."""

    def __init__(self, commits: Iterable[CommitRecord]) -> None:
        self._by_hash = {c.commit_hash: c for c in commits}

    @classmethod
    async def load(cls, log: DurableLog, group_id: str) -> History:
        return cls(await log.list_commits(group_id))

    def __contains__(self, commit_hash: object) -> bool:
        return commit_hash in self._by_hash

    def __len__(self) -> int:
        return len(self._by_hash)

    def get(self, commit_hash: str | None) -> CommitRecord | None:
        if commit_hash is None:
            return None
        return self._by_hash.get(commit_hash)

    def newest(self, limit: int | None = None) -> list[CommitRecord]:
        ordered = sorted(self._by_hash.values(), key=lambda c: c.sequence, reverse=True)
        return ordered if limit is None else ordered[:limit]

    def lineage(self, commit_hash: str | None) -> list[CommitRecord]:
        """*commit_hash* followed by its ``base_hash`` ancestors, newest first."""
        chain: list[CommitRecord] = []
        seen: set[str] = set()
        current = self.get(commit_hash)
        while current is not None and current.commit_hash not in seen:
            chain.append(current)
            seen.add(current.commit_hash)
            current = self.get(current.base_hash)
        return chain


@dataclass
class Snapshot:
    """The versions that are active while ``commit_hash`` is the active commit.

    Attributes:
        commit_hash: The commit this snapshot describes (``None`` = empty group).
        versions: First version seen per slot along the commit's lineage.
        missing: Point ids the lineage requires whose version rows are gone
            (reclaimed by the garbage collector).
    """

    commit_hash: str | None
    versions: dict[Slot, PointVersion] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    @property
    def refs(self) -> set[str]:
        return {pv.vector_ref for pv in self.versions.values()}

    @property
    def slots(self) -> set[Slot]:
        return set(self.versions)

    @property
    def complete(self) -> bool:
        return not self.missing


async def load_snapshot(
    log: DurableLog,
    history: History,
    group_id: str,
    commit_hash: str | None,
) -> Snapshot:
    """Resolve the reachable set of *commit_hash* from the log mirror."""
    lineage = history.lineage(commit_hash)
    if not lineage:
        return Snapshot(commit_hash=commit_hash)

    rows = await log.point_versions_for_commits(group_id, [c.commit_hash for c in lineage])
    by_commit: dict[str, list[PointVersion]] = defaultdict(list)
    for pv in rows:
        by_commit[pv.commit_hash].append(pv)

    versions: dict[Slot, PointVersion] = {}
    required_seen: set[str] = set()
    missing: list[str] = []
    for commit in lineage:
        present = {pv.point_id for pv in by_commit[commit.commit_hash]}
        for point_id in commit.point_ids:
            if point_id in required_seen:
                continue
            required_seen.add(point_id)
            if point_id not in present:
                missing.append(point_id)
        for pv in by_commit[commit.commit_hash]:
            versions.setdefault(pv.key, pv)

    return Snapshot(commit_hash=commit_hash, versions=versions, missing=missing)


# ------------------------------------------------------------------
# Batch construction
# ------------------------------------------------------------------


def chunk_batches(
    kind: BatchKind,
    entries: list[dict[str, Any]],
    batch_size: int,
    start_seq: int = 0,
) -> list[PendingBatch]:
    """Split *entries* into ``PendingBatch`` rows of at most *batch_size*."""
    return [
        PendingBatch(
            op_id="",
            seq=start_seq + n,
            kind=kind.value,
            entries=entries[i : i + batch_size],
        )
        for n, i in enumerate(range(0, len(entries), batch_size))
    ]


def converge_plan(
    versions: Iterable[PointVersion],
    desired_refs: set[str],
    batch_size: int,
    start_seq: int = 0,
    uncertain: Iterable[str] = (),
) -> tuple[list[PendingBatch], int, int]:
    """Activity batches that make exactly *desired_refs* active among *versions*.

    Only versions whose mirrored flag differs are touched, except
    *uncertain* refs (sent by an earlier plan without being recorded),
    which always get an explicit entry.  Activations come before
    deactivations.  Returns ``(batches, activated, deactivated)``.
    """
    forced = set(uncertain)
    activate: list[str] = []
    deactivate: list[str] = []
    for pv in versions:
        wanted = pv.vector_ref in desired_refs
        if wanted and (not pv.is_active or pv.vector_ref in forced):
            activate.append(pv.vector_ref)
        elif not wanted and (pv.is_active or pv.vector_ref in forced):
            deactivate.append(pv.vector_ref)

    entries = [{"vector_ref": ref, "is_active": True} for ref in sorted(activate)]
    entries += [{"vector_ref": ref, "is_active": False} for ref in sorted(deactivate)]
    batches = chunk_batches(BatchKind.ACTIVITY, entries, batch_size, start_seq)
    return batches, len(activate), len(deactivate)


def _point_slots(points: Iterable[dict[str, Any]]) -> set[Slot]:
    return {(p["source_doc_id"], p["chunk_index"]) for p in points}


def _finalize(active: str | None, head: str | None, commit: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"active": active, "head": head, "commit": commit}


# ------------------------------------------------------------------
# Planners
# ------------------------------------------------------------------


async def plan_commit(
    log: DurableLog,
    group_id: str,
    pointer: GroupPointer,
    request: dict[str, Any],
    batch_size: int,
    uncertain: frozenset[str] = frozenset(),
) -> PlannedOp:
    """Upsert every new version, then deactivate whatever else is active in its slot.

    The commit is chained onto the current head and built on the current
    active commit, so its hash is recomputed on every re-plan.
    """
    history = await History.load(log, group_id)
    head = history.get(pointer.head_commit_hash)
    points: list[dict[str, Any]] = request["points"]
    timestamp = datetime.fromisoformat(request["timestamp"])
    commit_hash = compute_commit_hash(
        [p["digest"] for p in points], pointer.head_commit_hash, timestamp
    )

    upserts = [
        {
            "vector_ref": p["vector_ref"],
            "point_id": p["point_id"],
            "source_doc_id": p["source_doc_id"],
            "chunk_index": p["chunk_index"],
            "vector": p["vector"],
            "payload": {
                **p["metadata"],
                "commit_hash": commit_hash,
                "group_id": group_id,
                "is_active": True,
                "timestamp": request["timestamp"],
                "source_doc_id": p["source_doc_id"],
                "chunk_index": p["chunk_index"],
                "point_id": p["point_id"],
            },
        }
        for p in points
    ]
    batches = chunk_batches(BatchKind.UPSERT, upserts, batch_size)

    new_refs = {p["vector_ref"] for p in points}
    slot_versions = await log.point_versions_for_keys(group_id, _point_slots(points))
    others = [pv for pv in slot_versions if pv.vector_ref not in new_refs]
    activity, _, deactivated = converge_plan(
        others, set(), batch_size, start_seq=len(batches), uncertain=uncertain
    )
    batches += activity

    commit = {
        "commit_hash": commit_hash,
        "parent_hash": pointer.head_commit_hash,
        "base_hash": pointer.active_commit_hash,
        "sequence": head.sequence + 1 if head is not None else 1,
        "message": request["message"],
        "point_ids": [p["point_id"] for p in points],
        "timestamp": request["timestamp"],
    }
    planned_request = {
        **request,
        "deactivated": deactivated,
        "finalize": _finalize(commit_hash, commit_hash, commit),
    }
    return PlannedOp(
        target_commit_hash=commit_hash,
        expected_version=pointer.version_counter,
        request=planned_request,
        batches=batches,
    )


async def plan_rollback(
    log: DurableLog,
    group_id: str,
    pointer: GroupPointer,
    request: dict[str, Any],
    batch_size: int,
    uncertain: frozenset[str] = frozenset(),
) -> PlannedOp:
    """Converge every slot of the current and target snapshots onto the target."""
    target: str = request["target"]
    history = await History.load(log, group_id)
    current = await load_snapshot(log, history, group_id, pointer.active_commit_hash)
    wanted = await load_snapshot(log, history, group_id, target)

    versions = await log.point_versions_for_keys(group_id, current.slots | wanted.slots)
    batches, activated, deactivated = converge_plan(
        versions, wanted.refs, batch_size, uncertain=uncertain
    )

    planned_request = {
        **request,
        "previous": pointer.active_commit_hash,
        "activated": activated,
        "deactivated": deactivated,
        "finalize": _finalize(target, pointer.head_commit_hash),
    }
    return PlannedOp(
        target_commit_hash=target,
        expected_version=pointer.version_counter,
        request=planned_request,
        batches=batches,
    )


async def plan_commit_compensation(
    log: DurableLog,
    group_id: str,
    pointer: GroupPointer,
    request: dict[str, Any],
    batch_size: int,
    uncertain: frozenset[str] = frozenset(),
) -> PlannedOp:
    """Undo an abandoned commit: restore its slots to the active snapshot, then delete its points."""
    points: list[dict[str, Any]] = request["points"]
    history = await History.load(log, group_id)
    current = await load_snapshot(log, history, group_id, pointer.active_commit_hash)

    own_refs = {p["vector_ref"] for p in points}
    slot_versions = await log.point_versions_for_keys(group_id, _point_slots(points))
    others = [pv for pv in slot_versions if pv.vector_ref not in own_refs]
    batches, _, _ = converge_plan(others, current.refs, batch_size, uncertain=uncertain)
    deletes = [{"vector_ref": ref} for ref in sorted(own_refs)]
    batches += chunk_batches(BatchKind.DELETE, deletes, batch_size, start_seq=len(batches))

    return PlannedOp(
        target_commit_hash=pointer.active_commit_hash,
        expected_version=pointer.version_counter,
        request={**request, "finalize": _finalize(pointer.active_commit_hash, pointer.head_commit_hash)},
        batches=batches,
    )


async def plan_rollback_compensation(
    log: DurableLog,
    group_id: str,
    pointer: GroupPointer,
    request: dict[str, Any],
    batch_size: int,
    uncertain: frozenset[str] = frozenset(),
) -> PlannedOp:
    """Undo an abandoned rollback: converge its slots back onto the active snapshot."""
    history = await History.load(log, group_id)
    current = await load_snapshot(log, history, group_id, pointer.active_commit_hash)
    abandoned = await load_snapshot(log, history, group_id, request["target"])

    versions = await log.point_versions_for_keys(group_id, current.slots | abandoned.slots)
    batches, _, _ = converge_plan(versions, current.refs, batch_size, uncertain=uncertain)

    return PlannedOp(
        target_commit_hash=pointer.active_commit_hash,
        expected_version=pointer.version_counter,
        request={**request, "finalize": _finalize(pointer.active_commit_hash, pointer.head_commit_hash)},
        batches=batches,
    )


_PLANNERS: dict[tuple[OpType, bool], Callable[..., Awaitable[PlannedOp]]] = {
    (OpType.COMMIT, False): plan_commit,
    (OpType.COMMIT, True): plan_commit_compensation,
    (OpType.ROLLBACK, False): plan_rollback,
    (OpType.ROLLBACK, True): plan_rollback_compensation,
}


def planner_for(op_type: str, aborting: bool) -> Callable[..., Awaitable[PlannedOp]]:
    """Return the planner that (re-)derives an operation of *op_type*."""
    return _PLANNERS[(OpType(op_type), aborting)]
