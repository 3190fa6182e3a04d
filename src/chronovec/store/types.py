"""PointStore value objects: points, activity updates, and call results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ------------------------------------------------------------------
# Payload schema
# ------------------------------------------------------------------

PAYLOAD_FIELDS: dict[str, str] = {
    "commit_hash": "keyword",
    "group_id": "keyword",
    "is_active": "bool",
    "timestamp": "datetime",
    "source_doc_id": "keyword",
    "chunk_index": "integer",
}
"""Fields the engine writes on every point, with their index type."""


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PointRecord:
    """A point ready for ``upsert_points``.

    Attributes:
        id: Store-level id (the version's ``vector_ref``).
        vector: Embedding vector.
        payload: Payload persisted alongside the vector.
    """

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ActivityUpdate:
    """Target activity state for one point.

    Always an explicit boolean, never a toggle, so re-applying is harmless.
    """

    id: str
    is_active: bool


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StoreResult:
    """Result of a batch call against the PointStore.

    Attributes:
        applied_count: Number of entries the store acknowledged.
        errors: Per-entry error messages; non-empty means the batch did
            not converge and must be retried.
    """

    applied_count: int
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True, slots=True)
class StoredPoint:
    """A point as read back from the store."""

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)
