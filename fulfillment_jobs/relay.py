"""
ShortPickRelay -- turns committed ITEM_SHORT events into HandleShortPick jobs.

Subscribe it to the publisher handed to FulfillmentEngine.  Because the
engine forwards events only after commit, a job is never enqueued for a
short pick that was rolled back.
"""

from __future__ import annotations

from uuid import UUID

from fulfillment_jobs.queue import InMemoryJobQueue
from fulfillment_jobs.types import HandleShortPick
from fulfillment_kernel.domain.events import DomainEvent, EventType
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("jobs.relay")


class ShortPickRelay:
    def __init__(self, queue: InMemoryJobQueue):
        self._queue = queue

    def __call__(self, event: DomainEvent) -> None:
        if event.event_type != EventType.ITEM_SHORT:
            return
        job = HandleShortPick(
            task_item_id=UUID(event.payload["task_item_id"]),
            reported_by=event.payload.get("user_id"),
        )
        self._queue.enqueue(job)
        logger.info(
            "short_pick_relayed",
            extra={
                "task_item_id": event.payload["task_item_id"],
                "shortage": event.payload.get("shortage"),
            },
        )
