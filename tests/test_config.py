"""Tests for configuration dataclasses and the tenacity retry helpers."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from chronovec.config import EngineConfig, RetentionPolicy, RetryPolicy
from chronovec.exceptions import StoreUnavailableError
from chronovec.retry import call_with_retry

_FAST = RetryPolicy(max_attempts=3, min_wait=0, max_wait=0)


# =========================================================================
# Config
# =========================================================================


class TestRetryPolicy:
    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.min_wait <= policy.max_wait

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_rejects_inverted_waits(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(min_wait=2.0, max_wait=1.0)

    def test_timeout_defaults_to_none(self) -> None:
        assert RetryPolicy().timeout is None

    @pytest.mark.parametrize("timeout", [0, -1.0])
    def test_rejects_non_positive_timeout(self, timeout: float) -> None:
        with pytest.raises(ValueError, match="timeout"):
            RetryPolicy(timeout=timeout)


class TestEngineConfig:
    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.batch_size == 500
        assert config.cas_retry.max_attempts == 5
        assert config.log_retry.max_attempts == 3
        assert config.store_retry.timeout == 30.0

    def test_rejects_bad_batch_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            EngineConfig(batch_size=0)

    def test_frozen(self) -> None:
        config = EngineConfig()
        with pytest.raises(AttributeError):
            config.batch_size = 10  # type: ignore[misc]


class TestRetentionPolicy:
    def test_defaults(self) -> None:
        policy = RetentionPolicy()
        assert policy.min_age == timedelta(days=7)
        assert policy.protected_depth == 5
        assert policy.mode == "delete"
        assert policy.dry_run is False

    def test_rejects_unknown_mode(self) -> None:
        with pytest.raises(ValueError, match="mode"):
            RetentionPolicy(mode="shred")  # type: ignore[arg-type]

    def test_rejects_negative_values(self) -> None:
        with pytest.raises(ValueError):
            RetentionPolicy(protected_depth=-1)
        with pytest.raises(ValueError):
            RetentionPolicy(min_age=timedelta(seconds=-1))


# =========================================================================
# Retry
# =========================================================================


class TestCallWithRetry:
    async def test_returns_first_success(self) -> None:
        calls: list[int] = []

        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("down")
            return "ok"

        assert await call_with_retry(_FAST, flaky) == "ok"
        assert len(calls) == 3

    async def test_reraises_after_exhaustion(self) -> None:
        calls: list[int] = []

        async def down() -> None:
            calls.append(1)
            raise StoreUnavailableError("still down")

        with pytest.raises(StoreUnavailableError):
            await call_with_retry(_FAST, down)
        assert len(calls) == 3

    async def test_does_not_retry_other_errors(self) -> None:
        calls: list[int] = []

        async def broken() -> None:
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            await call_with_retry(_FAST, broken)
        assert len(calls) == 1

    async def test_slow_attempt_times_out_and_is_retried(self) -> None:
        policy = RetryPolicy(max_attempts=3, min_wait=0, max_wait=0, timeout=0.05)
        calls: list[int] = []

        async def hangs() -> None:
            calls.append(1)
            await asyncio.Event().wait()

        with pytest.raises(TimeoutError):
            await call_with_retry(policy, hangs)
        assert len(calls) == 3

    async def test_timeout_only_bounds_one_attempt(self) -> None:
        policy = RetryPolicy(max_attempts=2, min_wait=0, max_wait=0, timeout=0.05)
        calls: list[int] = []

        async def slow_then_fast() -> str:
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "ok"

        assert await call_with_retry(policy, slow_then_fast) == "ok"
        assert len(calls) == 2

    async def test_passes_arguments(self) -> None:
        async def add(a: int, b: int = 0) -> int:
            return a + b

        assert await call_with_retry(_FAST, add, 2, b=3) == 5
