"""EventBus and event types for observing version-control operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of engine events delivered after an operation completes."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    OPERATION_RESUMED = "operation_resumed"
    OPERATION_COMPENSATED = "operation_compensated"
    POINTS_COLLECTED = "points_collected"


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """Immutable record of a completed engine operation.

    Attributes:
        event_type: The kind of operation that completed.
        group_id: Group the operation ran against.
        commit_hash: Commit created (commits) or activated (rollbacks).
        op_id: Pending operation id, when one was recorded.
        details: Operation-specific extras (counts, previous hash, ...).
    """

    event_type: EventType
    group_id: str
    commit_hash: str | None = None
    op_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Dispatches engine events to registered handlers.

    Handlers are called sequentially in registration order.
    Exceptions are logged but never propagated: the operation that
    produced the event has already been made durable.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: VaultEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in self._handlers[event.event_type]:
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on group %s",
                    handler,
                    event.event_type.value,
                    event.group_id,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
