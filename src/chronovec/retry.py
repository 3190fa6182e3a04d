"""Retry helpers built on tenacity.

Every bounded retry loop in the engine (PointStore batches, the CAS loop,
recovery status writes) goes through :func:`async_retrying` so backoff
behaviour is configured in exactly one place: :class:`RetryPolicy`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chronovec.exceptions import StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chronovec.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    StoreUnavailableError,
)
"""Exceptions from a PointStore call that warrant a retry."""


def async_retrying(
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` controller from *policy*.

    The last exception is re-raised unchanged once attempts are exhausted.
    """
    return AsyncRetrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.multiplier,
            min=policy.min_wait,
            max=policy.max_wait,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_STORE_ERRORS,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying *retry_on* errors per *policy*.

    Each attempt is bounded by ``policy.timeout``; an attempt that runs
    over is cancelled and counts as a ``TimeoutError``.
    """
    async for attempt in async_retrying(policy, retry_on):
        with attempt:
            async with asyncio.timeout(policy.timeout):
                return await func(*args, **kwargs)
    raise AssertionError("unreachable: tenacity re-raises on exhaustion")
