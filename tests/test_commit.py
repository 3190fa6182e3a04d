"""Tests for commit: validation, chaining, activation and the store payload."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from chronovec import NewPoint, NotFoundError, is_active
from chronovec.hashing import default_point_id, is_commit_hash
from tests.conftest import new_points, vector_for

if TYPE_CHECKING:
    from chronovec import LocalPointStore, VaultAsync
    from tests.conftest import FakeClock


async def _active_store_ids(store: LocalPointStore, group_id: str) -> set[str]:
    return set(await store.filter_query(group_id, is_active()))


async def _active_log_refs(vault: VaultAsync, group_id: str) -> set[str]:
    return {pv.vector_ref for pv in await vault.log.active_point_versions(group_id)}


# ==================================================================
# Validation
# ==================================================================


class TestValidation:
    async def test_empty_commit(self, vault: VaultAsync) -> None:
        with pytest.raises(ValueError, match="at least one"):
            await vault.commit("g", [])

    async def test_negative_chunk_index(self, vault: VaultAsync) -> None:
        with pytest.raises(ValueError, match="chunk_index"):
            await vault.commit("g", [NewPoint("doc", -1, vector_for(0))])

    async def test_empty_vector(self, vault: VaultAsync) -> None:
        with pytest.raises(ValueError, match="Empty vector"):
            await vault.commit("g", [NewPoint("doc", 0, [])])

    async def test_duplicate_slot(self, vault: VaultAsync) -> None:
        points = [NewPoint("doc", 0, vector_for(0)), NewPoint("doc", 0, vector_for(1))]
        with pytest.raises(ValueError, match="Duplicate chunk"):
            await vault.commit("g", points)

    async def test_duplicate_point_id(self, vault: VaultAsync) -> None:
        points = [
            NewPoint("a", 0, vector_for(0), point_id="same"),
            NewPoint("b", 0, vector_for(1), point_id="same"),
        ]
        with pytest.raises(ValueError, match="point_id"):
            await vault.commit("g", points)

    @pytest.mark.parametrize(
        "points",
        [
            [],
            [NewPoint("doc", -1, vector_for(0))],
            [NewPoint("doc", 0, [])],
            [NewPoint("doc", 0, vector_for(0)), NewPoint("doc", 0, vector_for(1))],
            [NewPoint("a", 0, vector_for(0), point_id="x"), NewPoint("b", 0, vector_for(1), point_id="x")],
        ],
    )
    async def test_errors_name_the_group(self, vault: VaultAsync, points: list[NewPoint]) -> None:
        with pytest.raises(ValueError, match="group 'docs-eu'"):
            await vault.commit("docs-eu", points)

    async def test_rejected_commit_writes_nothing(self, vault: VaultAsync) -> None:
        with pytest.raises(ValueError):
            await vault.commit("g", [])
        assert await vault.log.get_group_pointer("g") is None
        assert len(vault.store) == 0  # type: ignore[arg-type]


# ==================================================================
# First commit
# ==================================================================


class TestFirstCommit:
    async def test_creates_group_and_activates(self, vault: VaultAsync) -> None:
        info = await vault.commit("g", new_points("doc", 3), message="initial")

        assert is_commit_hash(info.commit_hash)
        assert info.parent_hash is None
        assert info.base_hash is None
        assert info.sequence == 1
        assert info.message == "initial"
        assert len(info.point_ids) == 3

        status = await vault.status("g")
        assert status.active_commit_hash == info.commit_hash
        assert status.head_commit_hash == info.commit_hash
        assert status.version_counter == 1
        assert status.pending_ops == []

    async def test_store_and_log_agree(self, vault: VaultAsync) -> None:
        await vault.commit("g", new_points("doc", 3))
        active = await _active_log_refs(vault, "g")
        assert len(active) == 3
        assert await _active_store_ids(vault.store, "g") == active  # type: ignore[arg-type]

    async def test_payload_fields(self, vault: VaultAsync, clock: FakeClock) -> None:
        point = NewPoint("doc", 2, vector_for(5), metadata={"lang": "en"})
        info = await vault.commit("g", [point])
        (ref,) = await _active_log_refs(vault, "g")

        payload = vault.store.payload(ref)  # type: ignore[attr-defined]
        assert payload["commit_hash"] == info.commit_hash
        assert payload["group_id"] == "g"
        assert payload["is_active"] is True
        assert payload["timestamp"] == clock.now.isoformat()
        assert payload["source_doc_id"] == "doc"
        assert payload["chunk_index"] == 2
        assert payload["lang"] == "en"

    async def test_default_point_ids_are_stable(self, vault: VaultAsync) -> None:
        info = await vault.commit("g", new_points("doc", 2))
        assert info.point_ids[0] in {default_point_id("g", "doc", 0), default_point_id("g", "doc", 1)}

    async def test_explicit_point_id_kept(self, vault: VaultAsync) -> None:
        info = await vault.commit("g", [NewPoint("doc", 0, vector_for(0), point_id="mine")])
        assert info.point_ids == ("mine",)

    async def test_payload_indexes_created_on_open(self, vault: VaultAsync) -> None:
        indexes = vault.store.indexes  # type: ignore[attr-defined]
        assert indexes["group_id"] == "keyword"
        assert indexes["is_active"] == "bool"
        assert indexes["chunk_index"] == "integer"


# ==================================================================
# Chaining
# ==================================================================


class TestChaining:
    async def test_second_commit_chains_onto_first(self, vault: VaultAsync, clock: FakeClock) -> None:
        first = await vault.commit("g", new_points("doc", 2))
        clock.advance()
        second = await vault.commit("g", new_points("doc", 2, seed=10))

        assert second.parent_hash == first.commit_hash
        assert second.base_hash == first.commit_hash
        assert second.sequence == 2
        assert second.commit_hash != first.commit_hash

    async def test_revision_deactivates_previous_versions(self, vault: VaultAsync) -> None:
        await vault.commit("g", new_points("doc", 3))
        await vault.commit("g", new_points("doc", 2, seed=10))

        active = await _active_log_refs(vault, "g")
        assert len(active) == 3
        assert await _active_store_ids(vault.store, "g") == active  # type: ignore[arg-type]
        status = await vault.status("g")
        assert status.inactive_count == 2

    async def test_unrelated_slots_stay_active(self, vault: VaultAsync) -> None:
        await vault.commit("g", new_points("a.md", 2))
        await vault.commit("g", new_points("b.md", 2))
        assert len(await _active_log_refs(vault, "g")) == 4

    async def test_exactly_one_active_version_per_slot(self, vault: VaultAsync) -> None:
        for seed in range(4):
            await vault.commit("g", new_points("doc", 3, seed=seed))
        versions = await vault.log.active_point_versions("g")
        keys = [pv.key for pv in versions]
        assert sorted(keys) == [("doc", 0), ("doc", 1), ("doc", 2)]

    async def test_batches_split_by_batch_size(self, vault: VaultAsync) -> None:
        # batch_size is 4 in the test config
        info = await vault.commit("g", new_points("doc", 10))
        assert len(info.point_ids) == 10
        assert len(await _active_store_ids(vault.store, "g")) == 10  # type: ignore[arg-type]


# ==================================================================
# Groups and history
# ==================================================================


class TestGroupsAndHistory:
    async def test_groups_are_isolated(self, vault: VaultAsync) -> None:
        g1 = await vault.commit("g1", new_points("doc", 2))
        g2 = await vault.commit("g2", new_points("doc", 2))
        assert g1.commit_hash != g2.commit_hash
        assert len(await _active_store_ids(vault.store, "g1")) == 2  # type: ignore[arg-type]
        assert (await vault.status("g2")).version_counter == 1

    async def test_history_newest_first(self, vault: VaultAsync, clock: FakeClock) -> None:
        hashes = []
        for seed in range(3):
            clock.advance()
            hashes.append((await vault.commit("g", new_points("doc", 1, seed=seed))).commit_hash)

        history = await vault.history("g")
        assert [c.commit_hash for c in history] == list(reversed(hashes))
        assert [c.commit_hash for c in await vault.history("g", limit=2)] == hashes[:0:-1]

    async def test_history_unknown_group(self, vault: VaultAsync) -> None:
        with pytest.raises(NotFoundError):
            await vault.history("nope")

    async def test_status_unknown_group(self, vault: VaultAsync) -> None:
        with pytest.raises(NotFoundError):
            await vault.status("nope")
