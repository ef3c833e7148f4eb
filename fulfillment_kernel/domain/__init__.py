"""
Pure domain layer.

State machines, events, pick path sequencing, the clock abstraction and
result DTOs.  NO dependencies on the ORM, the database or I/O (apart from
SystemClock and the logging publisher).
"""

from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.events import (
    BufferedEventPublisher,
    DomainEvent,
    EventPublisher,
    EventType,
    InMemoryEventPublisher,
    LoggingEventPublisher,
)

__all__ = [
    "BufferedEventPublisher",
    "Clock",
    "DeterministicClock",
    "DomainEvent",
    "EventPublisher",
    "EventType",
    "InMemoryEventPublisher",
    "LoggingEventPublisher",
    "SystemClock",
]
