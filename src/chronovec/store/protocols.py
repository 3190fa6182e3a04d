"""PointStore protocols: the capabilities the engine needs from the external store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from chronovec.store.filters import FilterExpression
    from chronovec.store.types import ActivityUpdate, PointRecord, StoreResult


# ------------------------------------------------------------------
# Core protocol
# ------------------------------------------------------------------


@runtime_checkable
class PointStore(Protocol):
    """Async protocol for a batch-updated, eventually-consistent point store.

    All calls must be safe to retry: the engine assumes at-least-once
    delivery and only ever sends target states keyed by point id.
    Transient transport failures should surface as ``ConnectionError``,
    ``TimeoutError``, ``OSError`` or ``StoreUnavailableError``.
    """

    async def upsert_points(self, points: list[PointRecord]) -> StoreResult:
        """Insert or replace points by id."""
        ...

    async def set_activity(self, updates: list[ActivityUpdate]) -> StoreResult:
        """Set the ``is_active`` payload flag of existing points."""
        ...

    async def filter_query(
        self,
        group_id: str,
        predicate: FilterExpression | None = None,
    ) -> list[str]:
        """Return ids of points in *group_id* whose payload matches *predicate*."""
        ...

    async def create_index(self, field: str, field_type: str) -> None:
        """Create a payload index on *field*."""
        ...

    async def delete_points(self, ids: list[str]) -> StoreResult:
        """Hard-delete points by id. Missing ids are not an error."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...

    @property
    def name(self) -> str:
        """Name of the underlying collection or index."""
        ...


# ------------------------------------------------------------------
# Capability protocols: checked via isinstance() at runtime
# ------------------------------------------------------------------


@runtime_checkable
class SupportsArchive(Protocol):
    """Store can offload points to cold storage instead of deleting them."""

    async def archive_points(self, ids: list[str]) -> StoreResult:
        """Move points out of the live collection into cold storage."""
        ...
