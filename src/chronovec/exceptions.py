"""Custom exception hierarchy for the chronovec engine."""

from __future__ import annotations


class ChronovecError(Exception):
    """Base exception for all chronovec errors.

    Engine errors carry the affected ``group_id`` and, where one exists,
    the ``op_id`` of the pending operation so operators can locate it via
    ``status()`` / ``repair()``.
    """

    def __init__(
        self,
        message: str,
        *,
        group_id: str | None = None,
        op_id: str | None = None,
    ) -> None:
        self.group_id = group_id
        self.op_id = op_id
        context: list[str] = []
        if group_id is not None:
            context.append(f"group_id={group_id!r}")
        if op_id is not None:
            context.append(f"op_id={op_id!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class ConflictError(ChronovecError):
    """Raised when the optimistic-lock CAS loop exhausts its retries.

    The caller should retry the whole logical operation later.
    """


class NotFoundError(ChronovecError):
    """Raised for an unknown group or a commit hash outside the group's chain."""


class PartialFailureError(ChronovecError):
    """Raised when a pending operation has not converged after exhausting retries.

    The pending operation is left intact; ``repair()`` is safe to run.
    """


class StoreUnavailableError(ChronovecError):
    """Raised when the PointStore stays unreachable after retries."""


class DurableLogError(ChronovecError):
    """Raised on local storage failures (DB connection, disk I/O, etc.)."""


class ConsistencyError(ChronovecError):
    """Raised when log and store disagree in a way the engine cannot converge."""


class CapabilityNotSupportedError(ChronovecError):
    """Raised when a PointStore doesn't support a requested capability."""
