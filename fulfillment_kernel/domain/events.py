"""
Domain events (``fulfillment_kernel.domain.events``).

Responsibility
--------------
Defines the structured event every state transition and completion emits,
the stable type tags, and the publisher interface consumed by the pub/sub
broadcaster (an external collaborator).

Architecture position
---------------------
**Kernel domain layer.**  Services publish through an ``EventPublisher``;
``FulfillmentEngine`` wraps the caller's publisher in a
``BufferedEventPublisher`` so that subscribers only ever observe events of
committed transactions.

Invariants enforced
-------------------
* ``event_type`` values are stable wire tags; renaming one is a breaking
  change for subscribers.
* Events are immutable once constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable
from uuid import UUID, uuid4

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.logging_config import LogContext, get_logger

logger = get_logger("domain.events")


class EventType(str, Enum):
    """Stable type tags for published events."""

    TASK_CREATED = "TASK_CREATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_UNASSIGNED = "TASK_UNASSIGNED"
    TASK_STARTED = "TASK_STARTED"
    TASK_PAUSED = "TASK_PAUSED"
    TASK_RESUMED = "TASK_RESUMED"
    TASK_BLOCKED = "TASK_BLOCKED"
    TASK_UNBLOCKED = "TASK_UNBLOCKED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_CANCELLED = "TASK_CANCELLED"

    ITEM_COMPLETED = "ITEM_COMPLETED"
    ITEM_SHORT = "ITEM_SHORT"
    ITEM_SKIPPED = "ITEM_SKIPPED"
    SHORT_PICK_DETECTED = "SHORT_PICK_DETECTED"

    PICKBIN_CREATED = "PICKBIN_CREATED"
    PICKBIN_STAGED = "PICKBIN_STAGED"
    PICKBIN_ITEM_VERIFIED = "PICKBIN_ITEM_VERIFIED"
    PICKBIN_COMPLETED = "PICKBIN_COMPLETED"
    PICKBIN_CANCELLED = "PICKBIN_CANCELLED"

    INVENTORY_ALLOCATED = "INVENTORY_ALLOCATED"
    INVENTORY_RELEASED = "INVENTORY_RELEASED"
    INVENTORY_PICKED = "INVENTORY_PICKED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"


@dataclass(frozen=True)
class DomainEvent:
    """A structured notification of something that happened."""

    event_type: EventType
    payload: dict[str, Any]
    occurred_at: datetime
    correlation_id: str | None = None
    event_id: UUID = field(default_factory=uuid4)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape for the broadcaster."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "payload": self.payload,
            "timestamp": self.occurred_at.isoformat(),
            "correlationId": self.correlation_id,
        }


def make_event(
    clock: Clock, event_type: EventType, **payload: Any
) -> DomainEvent:
    """Build an event stamped by *clock* and tagged with the bound correlation id."""
    return DomainEvent(
        event_type=event_type,
        payload=payload,
        occurred_at=clock.now(),
        correlation_id=LogContext.get("correlation_id"),
    )


# =============================================================================
# Publishers
# =============================================================================


@runtime_checkable
class EventPublisher(Protocol):
    """Anything that accepts domain events."""

    def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventPublisher:
    """
    Records every event and fans it out to subscribers.

    Used by tests and by single-process deployments that relay events to
    the job queue (see fulfillment_jobs.relay).
    """

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []
        self._subscribers: list[Callable[[DomainEvent], None]] = []

    def subscribe(self, handler: Callable[[DomainEvent], None]) -> None:
        self._subscribers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)
        for handler in self._subscribers:
            handler(event)

    def of_type(self, event_type: EventType) -> list[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventPublisher:
    """Writes each event to the structured log."""

    def publish(self, event: DomainEvent) -> None:
        logger.info(
            "domain_event_published",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type.value,
                "payload": event.payload,
            },
        )


class BufferedEventPublisher:
    """
    Collects events raised inside a transaction.

    Contract:
        ``flush_to`` forwards buffered events in order and empties the
        buffer; ``discard`` drops them.  The owner calls ``flush_to`` only
        after commit.
    """

    def __init__(self) -> None:
        self._buffer: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self._buffer.append(event)

    @property
    def pending(self) -> tuple[DomainEvent, ...]:
        return tuple(self._buffer)

    def flush_to(self, target: EventPublisher) -> int:
        events, self._buffer = self._buffer, []
        for event in events:
            target.publish(event)
        return len(events)

    def discard(self) -> int:
        dropped = len(self._buffer)
        self._buffer = []
        return dropped

    def checkpoint(self) -> int:
        """Mark the current buffer position (taken when a savepoint opens)."""
        return len(self._buffer)

    def discard_since(self, mark: int) -> int:
        """Drop events buffered after *mark* (the savepoint rolled back)."""
        dropped = len(self._buffer) - mark
        del self._buffer[mark:]
        return dropped
