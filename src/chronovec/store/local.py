"""LocalPointStore: in-process usearch HNSW point store."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from usearch.index import Index

from chronovec.store.filters import and_, eq, matches
from chronovec.store.types import StoredPoint, StoreResult

if TYPE_CHECKING:
    from chronovec.store.filters import FilterExpression
    from chronovec.store.types import ActivityUpdate, PointRecord

_INDEX_FILE = "points.usearch"
_META_FILE = "points_meta.json"
_ARCHIVE_FILE = "points_archive.json"


class LocalPointStore:
    """In-process point store backed by a usearch HNSW index.

    Implements the ``PointStore`` and ``SupportsArchive`` protocols for
    local development and tests.  Payload filtering is evaluated in
    process and supports every ``FilterOp``.  Archived points are moved to
    an in-memory cold tier that ``save()`` persists next to the index.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(
        self,
        *,
        dimension: int,
        metric: str = "cosine",
        name: str = "local",
    ) -> None:
        usearch_metric = "cos" if metric == "cosine" else metric
        self._dimension = dimension
        self._metric = metric
        self._name = name

        self._index = Index(ndim=dimension, metric=usearch_metric, dtype="f32")
        self._lock = threading.Lock()
        self._next_key: int = 0

        # key → {"id", "vector", "payload"}
        self._key_to_meta: dict[int, dict[str, Any]] = {}
        # id → usearch key
        self._id_to_key: dict[str, int] = {}
        self._archive: dict[str, dict[str, Any]] = {}
        self._indexes: dict[str, str] = {}

    # ------------------------------------------------------------------
    # PointStore protocol
    # ------------------------------------------------------------------

    async def upsert_points(self, points: list[PointRecord]) -> StoreResult:
        """Insert or replace points by id."""
        errors: list[str] = []
        count = 0
        for point in points:
            if len(point.vector) != self._dimension:
                errors.append(
                    f"{point.id}: expected {self._dimension} dimensions, got {len(point.vector)}"
                )
                continue

            if point.id in self._id_to_key:
                self._remove_by_id(point.id)
            self._archive.pop(point.id, None)

            vector = np.array(point.vector, dtype=np.float32)
            with self._lock:
                key = self._next_key
                self._next_key += 1
                self._index.add(key, vector)

            self._key_to_meta[key] = {
                "id": point.id,
                "vector": list(point.vector),
                "payload": dict(point.payload),
            }
            self._id_to_key[point.id] = key
            count += 1

        return StoreResult(applied_count=count, errors=errors)

    async def set_activity(self, updates: list[ActivityUpdate]) -> StoreResult:
        """Set the ``is_active`` payload flag of existing points."""
        errors: list[str] = []
        count = 0
        for update in updates:
            meta = self._meta_for(update.id)
            if meta is None:
                errors.append(f"{update.id}: point not found")
                continue
            meta["payload"]["is_active"] = update.is_active
            count += 1
        return StoreResult(applied_count=count, errors=errors)

    async def filter_query(
        self,
        group_id: str,
        predicate: FilterExpression | None = None,
    ) -> list[str]:
        """Return ids in *group_id* whose payload matches *predicate*."""
        expr: FilterExpression = eq("group_id", group_id)
        if predicate is not None:
            expr = and_(expr, predicate)
        return sorted(
            meta["id"] for meta in self._key_to_meta.values() if matches(meta["payload"], expr)
        )

    async def create_index(self, field: str, field_type: str) -> None:
        """Record a payload index.  Filtering is a scan, so this is bookkeeping only."""
        self._indexes[field] = field_type

    async def delete_points(self, ids: list[str]) -> StoreResult:
        """Hard-delete points by id (live or archived)."""
        count = 0
        for point_id in ids:
            removed = self._remove_by_id(point_id)
            archived = self._archive.pop(point_id, None) is not None
            if removed or archived:
                count += 1
        return StoreResult(applied_count=count)

    async def connect(self) -> None:
        """No-op for local store."""

    async def close(self) -> None:
        """No-op for local store."""

    @property
    def name(self) -> str:
        """Return the collection name."""
        return self._name

    # ------------------------------------------------------------------
    # SupportsArchive
    # ------------------------------------------------------------------

    async def archive_points(self, ids: list[str]) -> StoreResult:
        """Move points into the cold tier.  Already-archived ids count as applied."""
        count = 0
        for point_id in ids:
            if point_id in self._archive:
                count += 1
                continue
            key = self._id_to_key.get(point_id)
            if key is None:
                continue
            meta = self._key_to_meta[key]
            self._archive[point_id] = {
                "id": point_id,
                "vector": meta["vector"],
                "payload": dict(meta["payload"]),
            }
            self._remove_by_id(point_id)
            count += 1
        return StoreResult(applied_count=count)

    # ------------------------------------------------------------------
    # Local-specific methods
    # ------------------------------------------------------------------

    def has(self, point_id: str) -> bool:
        """Return whether *point_id* is present in the live collection."""
        return point_id in self._id_to_key

    def get(self, point_id: str) -> StoredPoint | None:
        """Return the live point *point_id*, or ``None``."""
        meta = self._meta_for(point_id)
        if meta is None:
            return None
        return StoredPoint(id=meta["id"], vector=list(meta["vector"]), payload=dict(meta["payload"]))

    def payload(self, point_id: str) -> dict[str, Any] | None:
        """Return a copy of the payload of *point_id*, or ``None``."""
        meta = self._meta_for(point_id)
        return dict(meta["payload"]) if meta is not None else None

    def is_archived(self, point_id: str) -> bool:
        return point_id in self._archive

    @property
    def indexes(self) -> dict[str, str]:
        """Payload indexes created so far (field → type)."""
        return dict(self._indexes)

    def __len__(self) -> int:
        """Return the number of live points."""
        return len(self._key_to_meta)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str | Path) -> None:
        """Persist the index, payloads, and archive to *directory*."""
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)

        with self._lock:
            self._index.save(str(dir_path / _INDEX_FILE))

        # Vectors live in usearch; the sidecar only carries ids and payloads
        sidecar: dict[str, Any] = {
            "next_key": self._next_key,
            "indexes": self._indexes,
            "key_to_meta": {
                str(k): {"id": v["id"], "payload": v["payload"]}
                for k, v in self._key_to_meta.items()
            },
        }
        with (dir_path / _META_FILE).open("w") as f:
            json.dump(sidecar, f)
        with (dir_path / _ARCHIVE_FILE).open("w") as f:
            json.dump(self._archive, f)

    def load(self, directory: str | Path) -> None:
        """Load a previously saved store from *directory*."""
        dir_path = Path(directory)

        with self._lock:
            self._index.load(str(dir_path / _INDEX_FILE))

        with (dir_path / _META_FILE).open() as f:
            sidecar = json.load(f)

        self._next_key = sidecar["next_key"]
        self._indexes = dict(sidecar.get("indexes", {}))
        self._key_to_meta = {}
        self._id_to_key = {}
        for k_str, meta in sidecar.get("key_to_meta", {}).items():
            key = int(k_str)
            vector = np.asarray(self._index.get(key), dtype=np.float32).tolist()
            self._key_to_meta[key] = {"id": meta["id"], "vector": vector, "payload": meta["payload"]}
            self._id_to_key[meta["id"]] = key

        archive_path = dir_path / _ARCHIVE_FILE
        if archive_path.exists():
            with archive_path.open() as f:
                self._archive = json.load(f)
        else:
            self._archive = {}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _meta_for(self, point_id: str) -> dict[str, Any] | None:
        key = self._id_to_key.get(point_id)
        if key is None:
            return None
        return self._key_to_meta.get(key)

    def _remove_by_id(self, point_id: str) -> bool:
        """Remove a single live point by id. Returns True if found."""
        key = self._id_to_key.pop(point_id, None)
        if key is None:
            return False
        self._key_to_meta.pop(key, None)
        with self._lock:
            self._index.remove(key)
        return True
