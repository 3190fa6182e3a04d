"""PineconePointStore: Pinecone index as the external point store."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from chronovec.exceptions import StoreUnavailableError
from chronovec.store.filters import and_, compile_pinecone, eq
from chronovec.store.types import StoreResult

if TYPE_CHECKING:
    from collections.abc import Iterator

    from chronovec.store.filters import FilterExpression
    from chronovec.store.types import ActivityUpdate, PointRecord

try:
    from pinecone import PineconeAsyncio
    from pinecone.exceptions import PineconeApiException, PineconeException

    _HAS_PINECONE = True
    _SDK_ERRORS: tuple[type[BaseException], ...] = (PineconeException, PineconeApiException)
except ImportError:  # pragma: no cover
    PineconeAsyncio = None  # type: ignore[assignment,misc]
    _HAS_PINECONE = False
    _SDK_ERRORS = ()

logger = logging.getLogger(__name__)

_UPSERT_BATCH_SIZE = 1000
_DELETE_BATCH_SIZE = 1000
_MAX_TOP_K = 10_000


class PineconePointStore:
    """Pinecone-backed ``PointStore``.

    Activity flips are metadata-only ``update`` calls, so the vectors are
    never re-sent.  ``filter_query`` is a metadata-filtered query with a
    fixed probe vector and is capped at 10,000 ids per call, which is the
    Pinecone ``top_k`` limit.

    Usage::

        store = PineconePointStore(index_name="docs")
        await store.connect()
        await store.upsert_points([PointRecord(id="a", vector=[0.1, ...], payload={})])
        await store.close()
    """

    def __init__(
        self,
        *,
        index_name: str,
        api_key: str | None = None,
        namespace: str = "",
    ) -> None:
        if not _HAS_PINECONE:
            msg = (
                "pinecone is required for PineconePointStore. "
                "Install it with: pip install chronovec[pinecone]"
            )
            raise ImportError(msg)

        self._index_name = index_name
        self._api_key = api_key or os.environ.get("PINECONE_API_KEY", "")
        self._namespace = namespace
        self._client: Any = None
        self._index: Any = None
        self._dimension: int | None = None

    # ------------------------------------------------------------------
    # PointStore protocol
    # ------------------------------------------------------------------

    async def upsert_points(self, points: list[PointRecord]) -> StoreResult:
        """Batch upsert. Chunks at 1000 vectors per API call."""
        idx = self._require_index()

        total = 0
        for i in range(0, len(points), _UPSERT_BATCH_SIZE):
            batch = points[i : i + _UPSERT_BATCH_SIZE]
            vectors = [
                {"id": p.id, "values": p.vector, "metadata": _clean_metadata(p.payload)}
                for p in batch
            ]
            with self._translate_errors("upsert"):
                resp = await idx.upsert(vectors=vectors, namespace=self._namespace)
            total += getattr(resp, "upserted_count", len(batch))

        return StoreResult(applied_count=total)

    async def set_activity(self, updates: list[ActivityUpdate]) -> StoreResult:
        """One metadata ``update`` per point; Pinecone has no batch update."""
        idx = self._require_index()
        with self._translate_errors("update"):
            for update in updates:
                await idx.update(
                    id=update.id,
                    set_metadata={"is_active": update.is_active},
                    namespace=self._namespace,
                )
        return StoreResult(applied_count=len(updates))

    async def filter_query(
        self,
        group_id: str,
        predicate: FilterExpression | None = None,
    ) -> list[str]:
        """Ids in *group_id* matching *predicate* (at most 10,000)."""
        idx = self._require_index()
        expr: FilterExpression = eq("group_id", group_id)
        if predicate is not None:
            expr = and_(expr, predicate)

        with self._translate_errors("query"):
            resp = await idx.query(
                vector=self._probe_vector(),
                top_k=_MAX_TOP_K,
                namespace=self._namespace,
                filter=compile_pinecone(expr),
                include_metadata=False,
                include_values=False,
            )
        ids = sorted(match.id for match in resp.matches)
        if len(ids) >= _MAX_TOP_K:
            logger.warning(
                "filter_query on %s hit the top_k cap; results are truncated", group_id
            )
        return ids

    async def create_index(self, field: str, field_type: str) -> None:
        """No-op: Pinecone indexes every metadata field by default."""
        logger.debug("Pinecone indexes metadata implicitly; skipping %s (%s)", field, field_type)

    async def delete_points(self, ids: list[str]) -> StoreResult:
        """Delete vectors by their ids."""
        idx = self._require_index()
        for i in range(0, len(ids), _DELETE_BATCH_SIZE):
            with self._translate_errors("delete"):
                await idx.delete(ids=ids[i : i + _DELETE_BATCH_SIZE], namespace=self._namespace)
        # Pinecone delete is fire-and-forget; actual count unknown
        return StoreResult(applied_count=len(ids))

    async def connect(self) -> None:
        """Initialize the Pinecone async client and get the index handle."""
        self._client = PineconeAsyncio(api_key=self._api_key)
        with self._translate_errors("describe_index"):
            desc = await self._client.describe_index(self._index_name)
        self._dimension = desc.dimension
        self._index = self._client.IndexAsyncio(host=desc.host)

    async def close(self) -> None:
        """Close the async client."""
        if self._index is not None:
            await self._index.close()
            self._index = None
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def name(self) -> str:
        """Return the index name."""
        return self._index_name

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        """Re-raise Pinecone SDK errors as ``StoreUnavailableError``."""
        try:
            yield
        except _SDK_ERRORS as exc:
            msg = f"Pinecone {action} on {self._index_name} failed: {exc}"
            raise StoreUnavailableError(msg) from exc

    def _probe_vector(self) -> list[float]:
        if not self._dimension:
            msg = "Index dimension unknown. Call connect() first."
            raise RuntimeError(msg)
        return [1.0] + [0.0] * (self._dimension - 1)

    def _require_index(self) -> Any:
        """Return the index handle, raising if not connected."""
        if self._index is None:
            msg = "Not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._index


def _clean_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values, which Pinecone metadata rejects."""
    return {k: v for k, v in payload.items() if v is not None}
