"""Optimistic concurrency control on the per-group version counter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from chronovec.exceptions import ConflictError
from chronovec.retry import async_retrying

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chronovec.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CasMismatch(Exception):
    """The group pointer moved since the attempt read it."""

    def __init__(self, group_id: str, expected_version: int) -> None:
        super().__init__(f"version_counter of {group_id!r} is no longer {expected_version}")
        self.group_id = group_id
        self.expected_version = expected_version


class OptimisticLock:
    """Run a read-plan-apply-CAS attempt until it wins or attempts run out.

    An attempt signals a lost race by raising :class:`CasMismatch`; it is
    then re-run after an exponential backoff.  When the policy is
    exhausted the last mismatch is converted to :class:`ConflictError`.
    There is no in-process lock: contention is detected only by the CAS,
    so writers in separate processes behave the same as writers in one.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy

    @property
    def max_attempts(self) -> int:
        return self._policy.max_attempts

    async def run(
        self,
        group_id: str,
        attempt: Callable[[int], Awaitable[T]],
        *,
        op_id: str | None = None,
    ) -> T:
        """Await ``attempt(n)`` for n = 1, 2, ... until it stops raising ``CasMismatch``."""
        try:
            async for retry in async_retrying(self._policy, (CasMismatch,)):
                with retry:
                    return await attempt(retry.retry_state.attempt_number)
        except CasMismatch as exc:
            logger.warning(
                "Gave up on group %s after %d CAS attempts", group_id, self._policy.max_attempts
            )
            raise ConflictError(
                f"Concurrent modification: gave up after {self._policy.max_attempts} attempts",
                group_id=group_id,
                op_id=op_id,
            ) from exc
        raise AssertionError("unreachable: tenacity re-raises on exhaustion")
