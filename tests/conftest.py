"""Shared fixtures for chronovec tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from chronovec import DurableLog, EngineConfig, LocalPointStore, NewPoint, RetryPolicy, VaultAsync
from chronovec.store.types import StoreResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from chronovec.store.filters import FilterExpression
    from chronovec.store.types import ActivityUpdate, PointRecord

DIM = 8


# =========================================================================
# Helpers
# =========================================================================


def vector_for(seed: int) -> list[float]:
    """Deterministic, non-zero vector of ``DIM`` floats."""
    return [float((seed * 31 + i * 7) % 13 + 1) for i in range(DIM)]


def new_points(doc: str, count: int, *, seed: int = 0, start: int = 0) -> list[NewPoint]:
    return [
        NewPoint(source_doc_id=doc, chunk_index=start + i, vector=vector_for(seed + i))
        for i in range(count)
    ]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta = timedelta(seconds=1)) -> datetime:
        self.now = self.now + delta
        return self.now


class VendorApiError(Exception):
    """Stands in for a store SDK error outside the OSError family."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(f"[{status}] {message}")
        self.status = status


class FlakyPointStore:
    """Wraps a ``LocalPointStore`` and fails batch calls on demand.

    After ``fail_after`` successful mutating calls, every further call
    fails until :meth:`heal` is called or ``max_failures`` failures have
    been counted.  Modes:

    * ``"raise"``: raise ``ConnectionError``.
    * ``"vendor"``: raise :class:`VendorApiError` (a 503).
    * ``"hang"``: never return.
    * ``"result"``: return a ``StoreResult`` with errors, apply nothing.
    """

    def __init__(
        self,
        inner: LocalPointStore,
        *,
        fail_after: int | None = None,
        mode: str = "raise",
    ) -> None:
        self.inner = inner
        self.fail_after = fail_after
        self.mode = mode
        self.max_failures: int | None = None
        self.calls = 0
        self.failures = 0

    def heal(self) -> None:
        self.fail_after = None

    def _should_fail(self) -> bool:
        failing = self.fail_after is not None and self.calls >= self.fail_after
        if failing and (self.max_failures is None or self.failures < self.max_failures):
            self.failures += 1
            return True
        self.calls += 1
        return False

    async def _failure(self, n: int) -> StoreResult:
        if self.mode == "raise":
            raise ConnectionError("store unreachable")
        if self.mode == "vendor":
            raise VendorApiError("Service Unavailable", 503)
        if self.mode == "hang":
            await asyncio.Event().wait()
        return StoreResult(applied_count=0, errors=["store rejected the batch"] * max(n, 1))

    async def upsert_points(self, points: list[PointRecord]) -> StoreResult:
        if self._should_fail():
            return await self._failure(len(points))
        return await self.inner.upsert_points(points)

    async def set_activity(self, updates: list[ActivityUpdate]) -> StoreResult:
        if self._should_fail():
            return await self._failure(len(updates))
        return await self.inner.set_activity(updates)

    async def delete_points(self, ids: list[str]) -> StoreResult:
        if self._should_fail():
            return await self._failure(len(ids))
        return await self.inner.delete_points(ids)

    async def archive_points(self, ids: list[str]) -> StoreResult:
        if self._should_fail():
            return await self._failure(len(ids))
        return await self.inner.archive_points(ids)

    async def filter_query(self, group_id: str, predicate: FilterExpression | None = None) -> list[str]:
        return await self.inner.filter_query(group_id, predicate)

    async def create_index(self, field: str, field_type: str) -> None:
        await self.inner.create_index(field, field_type)

    async def connect(self) -> None:
        await self.inner.connect()

    async def close(self) -> None:
        await self.inner.close()

    @property
    def name(self) -> str:
        return f"flaky-{self.inner.name}"


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def make_points() -> Callable[..., list[NewPoint]]:
    return new_points


@pytest.fixture
def vec() -> Callable[[int], list[float]]:
    return vector_for


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> EngineConfig:
    """Small batches and zero-wait retries so failure paths run fast."""
    return EngineConfig(
        batch_size=4,
        store_retry=RetryPolicy(max_attempts=3, min_wait=0, max_wait=0),
        cas_retry=RetryPolicy(max_attempts=3, min_wait=0, max_wait=0),
        log_retry=RetryPolicy(max_attempts=2, min_wait=0, max_wait=0),
    )


@pytest.fixture
async def log(clock: FakeClock) -> AsyncIterator[DurableLog]:
    """Durable log on an in-memory SQLite database, timestamped by *clock*."""
    durable_log = DurableLog.from_url("sqlite+aiosqlite://", clock=clock)
    await durable_log.open()
    yield durable_log
    await durable_log.close()


@pytest.fixture
def store() -> LocalPointStore:
    return LocalPointStore(dimension=DIM)


@pytest.fixture
def make_flaky(store: LocalPointStore) -> Callable[..., FlakyPointStore]:
    def _make(fail_after: int | None = None, mode: str = "raise") -> FlakyPointStore:
        return FlakyPointStore(store, fail_after=fail_after, mode=mode)

    return _make


@pytest.fixture
async def vault(
    log: DurableLog,
    store: LocalPointStore,
    config: EngineConfig,
    clock: FakeClock,
) -> AsyncIterator[VaultAsync]:
    v = VaultAsync(log, store, config=config, clock=clock)
    await v.open()
    yield v
    await v.close()

