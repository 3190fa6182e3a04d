"""Engine configuration: retry policies, batching, and retention."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Literal


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings."""

    max_attempts: int = 5
    """Total attempts, including the first one."""

    min_wait: float = 0.05
    """Lower bound of a single backoff sleep, in seconds."""

    max_wait: float = 2.0
    """Upper bound of a single backoff sleep, in seconds."""

    multiplier: float = 1.0
    """Exponential multiplier passed to ``tenacity.wait_exponential``."""

    timeout: float | None = None
    """Seconds one attempt may take before it fails with ``TimeoutError``."""

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.min_wait < 0 or self.max_wait < self.min_wait:
            raise ValueError("require 0 <= min_wait <= max_wait")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass(frozen=True)
class EngineConfig:
    """Configuration shared by the commit, rollback, recovery and GC services."""

    batch_size: int = 500
    """Maximum number of entries in one PointStore batch call."""

    store_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=5, min_wait=0.05, max_wait=2.0, timeout=30.0)
    )
    """Backoff and per-call timeout for PointStore calls."""

    cas_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=5, min_wait=0.01, max_wait=0.5)
    )
    """Backoff for the optimistic-lock compare-and-swap loop."""

    log_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=3, min_wait=0.01, max_wait=0.2)
    )
    """Backoff for Durable Log status writes during recovery."""

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")


@dataclass(frozen=True)
class RetentionPolicy:
    """What the garbage collector may reclaim."""

    min_age: timedelta = timedelta(days=7)
    """Inactive versions younger than this (since deactivation) are kept."""

    protected_depth: int = 5
    """Versions reachable from the newest N commits of a chain are kept."""

    mode: Literal["delete", "archive"] = "delete"
    """Hard delete, or offload to cold storage via ``SupportsArchive``."""

    group_id: str | None = None
    """Restrict collection to one group. ``None`` means every group."""

    dry_run: bool = False
    """Report candidates without touching the store or the log."""

    def __post_init__(self) -> None:
        if self.protected_depth < 0:
            raise ValueError("protected_depth must be >= 0")
        if self.min_age < timedelta(0):
            raise ValueError("min_age must not be negative")
        if self.mode not in ("delete", "archive"):
            raise ValueError(f"unknown retention mode: {self.mode!r}")
