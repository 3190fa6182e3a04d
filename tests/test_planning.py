"""Tests for plan derivation helpers: lineage walks and activity convergence."""

from __future__ import annotations

from chronovec.engine.planning import (
    History,
    chunk_batches,
    converge_plan,
    plan_commit,
    plan_rollback_compensation,
    planner_for,
)
from chronovec.models import BatchKind, CommitRecord, OpType, PointVersion


def _pv(ref: str, *, active: bool, chunk: int = 0) -> PointVersion:
    return PointVersion(
        vector_ref=ref,
        point_id=f"p{chunk}",
        group_id="g",
        commit_hash="c",
        source_doc_id="doc",
        chunk_index=chunk,
        is_active=active,
    )


def _commit(commit_hash: str, base: str | None, sequence: int) -> CommitRecord:
    return CommitRecord(
        commit_hash=commit_hash, group_id="g", op_id=f"op-{commit_hash}", base_hash=base, sequence=sequence
    )


class TestHistory:
    def test_lineage_follows_base(self) -> None:
        history = History([_commit("a", None, 1), _commit("b", "a", 2), _commit("c", "a", 3)])
        assert [c.commit_hash for c in history.lineage("c")] == ["c", "a"]
        assert [c.commit_hash for c in history.lineage("b")] == ["b", "a"]
        assert history.lineage(None) == []

    def test_lineage_stops_at_pruned_base(self) -> None:
        history = History([_commit("b", "gone", 2)])
        assert [c.commit_hash for c in history.lineage("b")] == ["b"]

    def test_newest(self) -> None:
        history = History([_commit("a", None, 1), _commit("b", "a", 2)])
        assert [c.commit_hash for c in history.newest()] == ["b", "a"]
        assert [c.commit_hash for c in history.newest(1)] == ["b"]
        assert "a" in history
        assert len(history) == 2


class TestChunkBatches:
    def test_sequence_numbers(self) -> None:
        entries = [{"vector_ref": str(i)} for i in range(5)]
        batches = chunk_batches(BatchKind.DELETE, entries, 2, start_seq=3)
        assert [b.seq for b in batches] == [3, 4, 5]
        assert [len(b.entries) for b in batches] == [2, 2, 1]
        assert {b.kind for b in batches} == {"delete"}

    def test_empty(self) -> None:
        assert chunk_batches(BatchKind.UPSERT, [], 10) == []


class TestConvergePlan:
    def test_only_mismatched_flags_are_touched(self) -> None:
        versions = [_pv("keep", active=True), _pv("on", active=False), _pv("off", active=True)]
        batches, activated, deactivated = converge_plan(versions, {"keep", "on"}, 10)
        (batch,) = batches
        assert batch.entries == [
            {"vector_ref": "on", "is_active": True},
            {"vector_ref": "off", "is_active": False},
        ]
        assert (activated, deactivated) == (1, 1)

    def test_already_converged(self) -> None:
        batches, activated, deactivated = converge_plan([_pv("a", active=True)], {"a"}, 10)
        assert batches == []
        assert (activated, deactivated) == (0, 0)

    def test_uncertain_refs_always_get_an_entry(self) -> None:
        versions = [_pv("a", active=True), _pv("b", active=False)]
        batches, _, _ = converge_plan(versions, {"a"}, 10, uncertain={"a", "b"})
        assert batches[0].entries == [
            {"vector_ref": "a", "is_active": True},
            {"vector_ref": "b", "is_active": False},
        ]

    def test_activations_before_deactivations_across_batches(self) -> None:
        versions = [_pv(f"off{i}", active=True) for i in range(3)] + [_pv("on", active=False)]
        batches, _, _ = converge_plan(versions, {"on"}, 2)
        assert batches[0].entries[0] == {"vector_ref": "on", "is_active": True}
        assert [b.seq for b in batches] == [0, 1]


class TestPlannerFor:
    def test_lookup(self) -> None:
        assert planner_for(OpType.COMMIT.value, False) is plan_commit
        assert planner_for("ROLLBACK", True) is plan_rollback_compensation
