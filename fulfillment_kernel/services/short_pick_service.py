"""
ShortPickService -- discrepancy recording and cycle-count escalation.

Responsibility:
    Turns a SHORT task item into an InventoryDiscrepancy and, when the same
    location accumulates too many short picks inside the rolling window,
    flags the location for a priority cycle count.

Architecture position:
    Kernel > Services.  Runs out-of-band: the ITEM_SHORT event is relayed to
    a HandleShortPick job, and the job dispatcher calls this service in its
    own unit of work.

Invariants enforced:
    - At most one SHORT_PICK discrepancy per task item, so an at-least-once
      job redelivery never double-counts toward escalation.
    - variance = actual - expected (negative for a short pick).
    - Escalation threshold and window come from ShortPickSettings
      (3 short picks in 7 days by default); priority HIGH.
    - An already-flagged location is left untouched.
"""

from datetime import timedelta
from uuid import UUID

from fulfillment_config.schema import ShortPickSettings
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import ShortPickOutcome
from fulfillment_kernel.domain.events import EventPublisher, EventType, make_event
from fulfillment_kernel.domain.states import TaskItemStatus
from fulfillment_kernel.exceptions import LocationNotFoundError, TaskItemNotFoundError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.discrepancy import (
    DiscrepancyStatus,
    DiscrepancyType,
    InventoryDiscrepancy,
)
from fulfillment_kernel.repositories.interfaces import (
    DiscrepancyRepository,
    InventoryRepository,
    TaskItemRepository,
)

logger = get_logger("services.short_pick")


class ShortPickService:
    """Short-pick escalation policy."""

    def __init__(
        self,
        task_items: TaskItemRepository,
        inventory: InventoryRepository,
        discrepancies: DiscrepancyRepository,
        clock: Clock,
        publisher: EventPublisher,
        settings: ShortPickSettings,
    ):
        self._items = task_items
        self._inventory = inventory
        self._discrepancies = discrepancies
        self._clock = clock
        self._publisher = publisher
        self._settings = settings

    def handle_short_pick(
        self, task_item_id: UUID, reported_by: str | None = None
    ) -> ShortPickOutcome:
        """
        Record the discrepancy for a short task item and escalate if needed.

        Postconditions:
            - One SHORT_PICK discrepancy exists for the item.
            - The location is flagged when its short picks within the window
              reach the threshold and it was not flagged already.

        Raises:
            TaskItemNotFoundError, LocationNotFoundError.
        """
        item = self._items.get(task_item_id)
        if item is None:
            raise TaskItemNotFoundError(task_item_id)

        if TaskItemStatus(item.status) != TaskItemStatus.SHORT:
            logger.info(
                "short_pick_ignored",
                extra={"task_item_id": str(item.id), "item_status": item.status},
            )
            return ShortPickOutcome(
                discrepancy_created=False, cycle_count_flagged=False, shortage=0
            )

        shortage = item.quantity_required - item.quantity_completed

        existing = self._discrepancies.get_for_task_item(item.id)
        if existing is not None:
            logger.info(
                "short_pick_redelivered",
                extra={"task_item_id": str(item.id), "discrepancy_id": str(existing.id)},
            )
            return ShortPickOutcome(
                discrepancy_created=False,
                cycle_count_flagged=False,
                shortage=shortage,
                discrepancy_id=existing.id,
            )

        location = self._inventory.get_location(item.location_id, for_update=True)
        if location is None:
            raise LocationNotFoundError(item.location_id)

        now = self._clock.now()
        discrepancy = InventoryDiscrepancy(
            discrepancy_type=DiscrepancyType.SHORT_PICK,
            product_variant_id=item.product_variant_id,
            location_id=location.id,
            expected_quantity=item.quantity_required,
            actual_quantity=item.quantity_completed,
            variance=item.quantity_completed - item.quantity_required,
            order_id=item.order_id,
            task_item_id=item.id,
            reported_by=reported_by or item.completed_by,
            reported_at=now,
            status=DiscrepancyStatus.PENDING_REVIEW,
            notes=item.short_reason,
        )
        self._discrepancies.add(discrepancy)
        self._discrepancies.flush()

        window = self._settings.window_days
        recent = self._discrepancies.count_short_picks_since(
            location.id, now - timedelta(days=window)
        )

        flagged = False
        if recent >= self._settings.threshold and not location.needs_cycle_count:
            location.needs_cycle_count = True
            location.cycle_count_priority = self._settings.cycle_count_priority
            location.cycle_count_reason = f"{recent} short picks in {window} days"
            location.cycle_count_flagged_at = now
            self._inventory.flush()
            flagged = True
            logger.warning(
                "short_pick_escalated",
                extra={
                    "location_id": str(location.id),
                    "location_name": location.name,
                    "recent_short_picks": recent,
                    "window_days": window,
                },
            )

        self._publisher.publish(
            make_event(
                self._clock,
                EventType.SHORT_PICK_DETECTED,
                task_item_id=str(item.id),
                order_id=str(item.order_id),
                location_id=str(location.id),
                location_name=location.name,
                product_variant_id=str(item.product_variant_id),
                shortage=shortage,
                discrepancy_id=str(discrepancy.id),
                recent_short_picks=recent,
                cycle_count_flagged=flagged,
            )
        )
        logger.info(
            "short_pick_recorded",
            extra={
                "task_item_id": str(item.id),
                "shortage": shortage,
                "recent_short_picks": recent,
            },
        )

        return ShortPickOutcome(
            discrepancy_created=True,
            cycle_count_flagged=flagged,
            shortage=shortage,
            discrepancy_id=discrepancy.id,
            recent_short_picks=recent,
        )
