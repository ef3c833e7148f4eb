"""
PickBinService -- consolidation of picked items and pack-station verification.

Responsibility:
    Builds one pick bin per (completed picking task, order) from the
    quantities actually picked, and drives the bin through
    STAGED -> SCANNING -> COMPLETED as the pack station scans each item.

Architecture position:
    Kernel > Services.  Invoked by WorkTaskService when a picking task
    completes, and by the pack-station scan flow.

Invariants enforced:
    - Bins are built only from a COMPLETED picking task, at most once per
      (task, order).
    - One bin item per product variant; quantity is the sum of the order's
      COMPLETED and SHORT task item quantities.
    - verified_quantity never exceeds quantity.
    - A bin completes only when every item is fully verified.

Failure modes:
    - TaskNotCompletedError, PickBinNotFoundError, BinItemNotFoundError,
      BinClosedError, BinIncompleteError, InvalidTransitionError.
"""

from uuid import UUID

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import BinItemView, BinLookup, BinVerificationResult
from fulfillment_kernel.domain.events import EventPublisher, EventType, make_event
from fulfillment_kernel.domain.states import (
    PickBinStatus,
    TaskItemStatus,
    WorkTaskStatus,
    assert_bin_transition,
    is_bin_terminal,
)
from fulfillment_kernel.exceptions import (
    BinClosedError,
    BinIncompleteError,
    BinItemNotFoundError,
    InvalidQuantityError,
    OrderNotFoundError,
    PickBinNotFoundError,
    TaskNotCompletedError,
    TaskNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.pick_bin import PickBin, PickBinItem
from fulfillment_kernel.models.work_task import TaskType
from fulfillment_kernel.repositories.interfaces import (
    InventoryRepository,
    OrderRepository,
    PickBinRepository,
    TaskItemRepository,
    WorkTaskRepository,
)
from fulfillment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.pick_bin")

_PICKED_ITEM_STATUSES = frozenset({TaskItemStatus.COMPLETED, TaskItemStatus.SHORT})


class PickBinService:
    """
    Pick bin lifecycle.

    Contract:
        Bin numbers and barcodes come from SequenceService and are unique.

    Non-goals:
        - Does NOT create packing tasks or shipments.
    """

    def __init__(
        self,
        bins: PickBinRepository,
        tasks: WorkTaskRepository,
        task_items: TaskItemRepository,
        orders: OrderRepository,
        inventory: InventoryRepository,
        sequences: SequenceService,
        clock: Clock,
        publisher: EventPublisher,
    ):
        self._bins = bins
        self._tasks = tasks
        self._items = task_items
        self._orders = orders
        self._inventory = inventory
        self._sequences = sequences
        self._clock = clock
        self._publisher = publisher

    def create_pick_bin(
        self, task_id: UUID, order_id: UUID, picked_by: str | None = None
    ) -> PickBin:
        """
        Build the bin for one order of a completed picking task.

        Returns the existing bin when called again for the same pair.

        Raises:
            TaskNotFoundError, OrderNotFoundError.
            TaskNotCompletedError: Task is not a COMPLETED picking task.
            InvalidQuantityError: Nothing was picked for the order.
        """
        task = self._tasks.get(task_id, for_update=True)
        if task is None:
            raise TaskNotFoundError(task_id)
        if (
            TaskType(task.task_type) != TaskType.PICKING
            or WorkTaskStatus(task.status) != WorkTaskStatus.COMPLETED
        ):
            raise TaskNotCompletedError(task.id, task.status)

        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        existing = self._bins.get_for_task_order(task.id, order.id)
        if existing is not None:
            return existing

        totals: dict[UUID, int] = {}
        for item in self._items.list_for_task(task.id):
            if item.order_id != order.id:
                continue
            if TaskItemStatus(item.status) not in _PICKED_ITEM_STATUSES:
                continue
            if item.quantity_completed <= 0:
                continue
            totals[item.product_variant_id] = (
                totals.get(item.product_variant_id, 0) + item.quantity_completed
            )
        if not totals:
            raise InvalidQuantityError(
                0, f"task {task.task_number} picked nothing for order {order.order_number}"
            )

        now = self._clock.now()
        bin_number, barcode = self._sequences.next_bin_identifiers()
        pick_bin = PickBin(
            bin_number=bin_number,
            barcode=barcode,
            order_id=order.id,
            pick_task_id=task.id,
            status=PickBinStatus.STAGED,
            picked_by=picked_by or task.assigned_to,
            picked_at=task.completed_at or now,
            staged_at=now,
        )
        for variant_id, quantity in totals.items():
            variant = self._inventory.get_variant(variant_id)
            pick_bin.items.append(
                PickBinItem(
                    product_variant_id=variant_id,
                    sku=variant.sku,
                    quantity=quantity,
                    verified_quantity=0,
                )
            )
        self._bins.add(pick_bin)
        self._bins.flush()

        self._publish(
            pick_bin,
            EventType.PICKBIN_CREATED,
            order_number=order.order_number,
            task_id=str(task.id),
            task_number=task.task_number,
            item_count=len(totals),
            total_quantity=sum(totals.values()),
        )
        logger.info(
            "pick_bin_created",
            extra={
                "bin_number": bin_number,
                "order_number": order.order_number,
                "task_number": task.task_number,
                "item_count": len(totals),
            },
        )
        return pick_bin

    def stage_bin(self, bin_id: UUID, staging_location: str) -> PickBin:
        """Record where the bin was put down for the pack station."""
        pick_bin = self._require_open(bin_id)
        pick_bin.staging_location = staging_location
        pick_bin.staged_at = self._clock.now()
        self._bins.flush()
        self._publish(pick_bin, EventType.PICKBIN_STAGED, staging_location=staging_location)
        return pick_bin

    def get_order_by_bin_barcode(self, barcode: str) -> BinLookup:
        """
        Pack-station lookup of a scanned bin barcode.  The first scan moves
        the bin to SCANNING.

        Raises:
            PickBinNotFoundError, BinClosedError.
        """
        pick_bin = self._bins.get_by_barcode(barcode.strip())
        if pick_bin is None:
            raise PickBinNotFoundError(barcode)
        self._check_open(pick_bin)
        self._begin_scan(pick_bin)

        order = self._orders.get(pick_bin.order_id)
        return BinLookup(
            bin_id=pick_bin.id,
            bin_number=pick_bin.bin_number,
            barcode=pick_bin.barcode,
            status=PickBinStatus(pick_bin.status),
            order_id=pick_bin.order_id,
            order_number=order.order_number,
            items=tuple(
                BinItemView(
                    sku=item.sku,
                    quantity=item.quantity,
                    verified_quantity=item.verified_quantity,
                    product_variant_id=item.product_variant_id,
                )
                for item in pick_bin.items
            ),
        )

    def verify_bin_item(
        self, bin_id: UUID, barcode: str, quantity: int = 1
    ) -> BinVerificationResult:
        """
        Count *quantity* scanned units of the item matching *barcode*.

        The increment is at least 1 and at most the item's remaining
        quantity.  Scanning a fully verified item returns
        ``verified=False`` and changes nothing.
        """
        pick_bin = self._require_open(bin_id)

        match = None
        for item in pick_bin.items:
            variant = self._inventory.get_variant(item.product_variant_id)
            if variant.matches_barcode(barcode) or item.sku.lower() == barcode.strip().lower():
                match = item
                break
        if match is None:
            raise BinItemNotFoundError(pick_bin.id, barcode)

        self._begin_scan(pick_bin)

        verified = False
        if match.verified_quantity < match.quantity:
            increment = min(max(1, quantity), match.remaining)
            match.verified_quantity += increment
            match.verified_at = self._clock.now()
            self._bins.flush()
            verified = True

        progress = f"{pick_bin.verified_quantity}/{pick_bin.total_quantity}"
        all_verified = pick_bin.all_verified

        if verified:
            self._publish(
                pick_bin,
                EventType.PICKBIN_ITEM_VERIFIED,
                sku=match.sku,
                verified_quantity=match.verified_quantity,
                quantity=match.quantity,
                progress=progress,
                all_verified=all_verified,
            )

        return BinVerificationResult(
            verified=verified,
            sku=match.sku,
            verified_quantity=match.verified_quantity,
            quantity=match.quantity,
            all_verified=all_verified,
            progress=progress,
        )

    def complete_bin(self, bin_id: UUID, packed_by: str | None = None) -> PickBin:
        """
        SCANNING -> COMPLETED.

        Raises:
            BinIncompleteError: Listing every SKU not fully verified.
        """
        pick_bin = self._require_open(bin_id)

        unverified = [
            item.sku for item in pick_bin.items if item.verified_quantity < item.quantity
        ]
        if unverified:
            raise BinIncompleteError(pick_bin.id, unverified)

        self._transition(pick_bin, PickBinStatus.COMPLETED)
        pick_bin.packed_by = packed_by
        pick_bin.packed_at = self._clock.now()
        self._bins.flush()

        self._publish(
            pick_bin,
            EventType.PICKBIN_COMPLETED,
            packed_by=packed_by,
            item_count=len(pick_bin.items),
            total_quantity=pick_bin.total_quantity,
        )
        logger.info(
            "pick_bin_completed",
            extra={"bin_number": pick_bin.bin_number, "packed_by": packed_by},
        )
        return pick_bin

    def cancel_bin(self, bin_id: UUID, reason: str) -> PickBin:
        pick_bin = self._require(bin_id)
        self._transition(pick_bin, PickBinStatus.CANCELLED)
        pick_bin.cancelled_at = self._clock.now()
        pick_bin.cancel_reason = reason
        self._bins.flush()
        self._publish(pick_bin, EventType.PICKBIN_CANCELLED, reason=reason)
        logger.info(
            "pick_bin_cancelled",
            extra={"bin_number": pick_bin.bin_number, "reason": reason},
        )
        return pick_bin

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, bin_id: UUID) -> PickBin:
        pick_bin = self._bins.get(bin_id, for_update=True)
        if pick_bin is None:
            raise PickBinNotFoundError(bin_id)
        return pick_bin

    def _require_open(self, bin_id: UUID) -> PickBin:
        pick_bin = self._require(bin_id)
        self._check_open(pick_bin)
        return pick_bin

    @staticmethod
    def _check_open(pick_bin: PickBin) -> None:
        if is_bin_terminal(PickBinStatus(pick_bin.status)):
            raise BinClosedError(pick_bin.id, pick_bin.status)

    def _begin_scan(self, pick_bin: PickBin) -> None:
        if PickBinStatus(pick_bin.status) == PickBinStatus.STAGED:
            self._transition(pick_bin, PickBinStatus.SCANNING)
            self._bins.flush()

    def _transition(self, pick_bin: PickBin, target: PickBinStatus) -> None:
        current = PickBinStatus(pick_bin.status)
        assert_bin_transition(current, target)
        pick_bin.status = target
        logger.debug(
            "pick_bin_status_changed",
            extra={
                "bin_number": pick_bin.bin_number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )

    def _publish(self, pick_bin: PickBin, event_type: EventType, **payload) -> None:
        self._publisher.publish(
            make_event(
                self._clock,
                event_type,
                bin_id=str(pick_bin.id),
                bin_number=pick_bin.bin_number,
                barcode=pick_bin.barcode,
                order_id=str(pick_bin.order_id),
                status=PickBinStatus(pick_bin.status).value,
                **payload,
            )
        )
