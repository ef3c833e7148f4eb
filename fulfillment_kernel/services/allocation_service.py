"""
AllocationService -- reserves physical inventory for order lines.

Responsibility:
    Decides which inventory units satisfy which order lines (FEFO then
    FIFO), records the reservations as Allocation rows, recomputes each
    line's allocated quantity from the ledger and derives the order's
    allocation status.  Also releases reservations and finds backorders
    that new stock could satisfy.

Architecture position:
    Kernel > Services.  Depends on repositories, InventoryLedger and
    OrderStatusProjection.  Called by WorkTaskService (task creation) and by
    restock / order-import entry points.

Invariants enforced:
    - No over-commit: for every unit, the sum of reserving allocations never
      exceeds unit.quantity.  The candidate units and the order are
      row-locked and the free quantity is re-summed inside the same
      transaction that inserts the allocation.
    - Idempotent by recomputation: the already-allocated quantity of a line
      is always SUM(committed allocations), so re-running allocation creates
      no new rows unless new stock has appeared.
    - OrderItem.quantity_allocated is overwritten from the ledger, never
      incremented.
    - Stock shortage is reported in the result, never raised.

Failure modes:
    - OrderNotFoundError: unknown order id.
    - OrderNotAllocatableError: order status excludes allocation; raised
      before any mutation.
    - TransactionAbortError: storage conflict (propagates, caller retries).
"""

from collections.abc import Callable, Iterable, Sequence
from contextlib import AbstractContextManager
from uuid import UUID

from fulfillment_config.schema import AllocationSettings
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import (
    AllocationLine,
    AllocationResult,
    BatchAllocationError,
    BatchAllocationResult,
    ItemAllocationOutcome,
    ItemAllocationStatus,
)
from fulfillment_kernel.domain.events import EventPublisher, EventType, make_event
from fulfillment_kernel.domain.states import (
    ALLOCATABLE_ORDER_STATUSES,
    COMMITTED_ALLOCATION_STATUSES,
    RELEASABLE_ALLOCATION_STATUSES,
    AllocationStatus,
    OrderStatus,
    assert_allocation_transition,
)
from fulfillment_kernel.exceptions import (
    FulfillmentKernelError,
    OrderNotAllocatableError,
    OrderNotFoundError,
    TransactionAbortError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.allocation import Allocation
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.repositories.interfaces import (
    AllocationRepository,
    InventoryRepository,
    OrderRepository,
)
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_status import OrderStatusProjection

logger = get_logger("services.allocation")

Savepoint = Callable[[], AbstractContextManager[None]]


class AllocationService:
    """
    FEFO/FIFO allocation engine.

    Contract:
        Runs inside the caller's transaction.  ``allocate_orders`` isolates
        each order in a savepoint so one failing order rolls back only its
        own work.

    Guarantees:
        - Units are consumed earliest-expiry first (undated units last),
          then oldest receipt, then by id.
        - Units at non-pickable locations are never allocated.

    Non-goals:
        - Does NOT commit.
        - Does NOT route across warehouses.
    """

    def __init__(
        self,
        orders: OrderRepository,
        inventory: InventoryRepository,
        allocations: AllocationRepository,
        ledger: InventoryLedger,
        projection: OrderStatusProjection,
        clock: Clock,
        publisher: EventPublisher,
        settings: AllocationSettings,
        savepoint: Savepoint,
    ):
        self._orders = orders
        self._inventory = inventory
        self._allocations = allocations
        self._ledger = ledger
        self._projection = projection
        self._clock = clock
        self._publisher = publisher
        self._settings = settings
        self._savepoint = savepoint

    # ------------------------------------------------------------------
    # Single order
    # ------------------------------------------------------------------

    def allocate_order(
        self, order_id: UUID, allow_partial: bool | None = None
    ) -> AllocationResult:
        """
        Allocate every matched line of one order.

        Preconditions:
            - Order status in {PENDING, CONFIRMED, BACKORDERED,
              PARTIALLY_ALLOCATED}.

        Postconditions:
            - New Allocation rows (status ALLOCATED) for the shortfall that
              free stock could cover.
            - Each matched line's quantity_allocated equals the SUM of its
              committed allocations.
            - Order status reflects the outcome (ALLOCATED,
              PARTIALLY_ALLOCATED, BACKORDERED or ON_HOLD).

        Raises:
            OrderNotFoundError: Unknown order.
            OrderNotAllocatableError: Status excludes allocation.
        """
        if allow_partial is None:
            allow_partial = self._settings.allow_partial

        order = self._orders.get(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)

        current = OrderStatus(order.status)
        if current not in ALLOCATABLE_ORDER_STATUSES:
            raise OrderNotAllocatableError(order.id, current)

        with LogContext.bind(order_id=order.id):
            items = list(order.items)
            unmatched = [item for item in items if not item.matched]

            if unmatched and len(unmatched) == len(items):
                return self._hold_unmatched(order, items)

            outcomes: list[ItemAllocationOutcome] = []
            lines: list[AllocationLine] = []
            total_allocated = 0
            total_backordered = 0

            for item in items:
                if not item.matched:
                    outcomes.append(
                        ItemAllocationOutcome(
                            order_item_id=item.id,
                            sku=item.sku,
                            status=ItemAllocationStatus.UNMATCHED,
                            quantity=item.quantity,
                            allocated=0,
                            backordered=0,
                        )
                    )
                    continue

                outcome, new_lines = self._allocate_item(order, item)
                outcomes.append(outcome)
                lines.extend(new_lines)
                total_allocated += outcome.allocated
                total_backordered += outcome.backordered

            target = self._derive_status(
                unmatched=len(unmatched),
                total_allocated=total_allocated,
                total_backordered=total_backordered,
                allow_partial=allow_partial,
            )
            hold_reason = None
            if target == OrderStatus.ON_HOLD:
                hold_reason = f"{len(unmatched)} unmatched, {total_backordered} backordered"
            self._projection.transition(order, target, hold_reason=hold_reason)
            self._allocations.flush()

            if lines:
                self._publisher.publish(
                    make_event(
                        self._clock,
                        EventType.INVENTORY_ALLOCATED,
                        order_id=str(order.id),
                        order_number=order.order_number,
                        quantity=sum(line.quantity for line in lines),
                        allocations=[
                            {
                                "allocation_id": str(line.allocation_id),
                                "order_item_id": str(line.order_item_id),
                                "inventory_unit_id": str(line.inventory_unit_id),
                                "location_id": str(line.location_id),
                                "quantity": line.quantity,
                                "lot_number": line.lot_number,
                            }
                            for line in lines
                        ],
                    )
                )

            logger.info(
                "order_allocated",
                extra={
                    "order_number": order.order_number,
                    "status": target.value,
                    "allocated_units": total_allocated,
                    "backordered_units": total_backordered,
                    "unmatched_items": len(unmatched),
                    "new_allocations": len(lines),
                },
            )

            return AllocationResult(
                order_id=order.id,
                order_number=order.order_number,
                status=target,
                total_items=len(items),
                allocated_items=total_allocated,
                backordered_items=total_backordered,
                unmatched_items=len(unmatched),
                items=tuple(outcomes),
                allocations=tuple(lines),
            )

    def _hold_unmatched(self, order: Order, items: list[OrderItem]) -> AllocationResult:
        reason = f"All {len(items)} items unmatched"
        self._projection.transition(order, OrderStatus.ON_HOLD, hold_reason=reason)

        logger.warning(
            "order_held_unmatched",
            extra={"order_number": order.order_number, "unmatched_items": len(items)},
        )
        return AllocationResult(
            order_id=order.id,
            order_number=order.order_number,
            status=OrderStatus.ON_HOLD,
            total_items=len(items),
            allocated_items=0,
            backordered_items=0,
            unmatched_items=len(items),
            items=tuple(
                ItemAllocationOutcome(
                    order_item_id=item.id,
                    sku=item.sku,
                    status=ItemAllocationStatus.UNMATCHED,
                    quantity=item.quantity,
                    allocated=0,
                    backordered=0,
                )
                for item in items
            ),
        )

    def _allocate_item(
        self, order: Order, item: OrderItem
    ) -> tuple[ItemAllocationOutcome, list[AllocationLine]]:
        already = self._allocations.sum_for_order_item(
            item.id, COMMITTED_ALLOCATION_STATUSES
        )
        remaining = max(0, item.quantity - already)
        lines: list[AllocationLine] = []

        if remaining > 0:
            now = self._clock.now()
            for unit in self._inventory.list_allocatable_units(item.product_variant_id):
                if remaining <= 0:
                    break
                if not unit.location.is_pickable:
                    continue

                free = self._ledger.free_quantity(unit)
                if free <= 0:
                    continue

                take = min(free, remaining)
                allocation = Allocation(
                    inventory_unit_id=unit.id,
                    order_id=order.id,
                    order_item_id=item.id,
                    product_variant_id=unit.product_variant_id,
                    location_id=unit.location_id,
                    quantity=take,
                    lot_number=unit.lot_number,
                    status=AllocationStatus.ALLOCATED,
                    allocated_at=now,
                )
                self._allocations.add(allocation)
                self._allocations.flush()

                lines.append(
                    AllocationLine(
                        allocation_id=allocation.id,
                        order_item_id=item.id,
                        inventory_unit_id=unit.id,
                        location_id=unit.location_id,
                        product_variant_id=unit.product_variant_id,
                        quantity=take,
                        lot_number=unit.lot_number,
                        expiry_date=unit.expiry_date,
                    )
                )
                remaining -= take

        allocated = already + sum(line.quantity for line in lines)
        item.quantity_allocated = min(allocated, item.quantity)

        if allocated >= item.quantity:
            status = ItemAllocationStatus.FULL
        elif allocated > 0:
            status = ItemAllocationStatus.PARTIAL
        else:
            status = ItemAllocationStatus.NONE

        outcome = ItemAllocationOutcome(
            order_item_id=item.id,
            sku=item.sku,
            status=status,
            quantity=item.quantity,
            allocated=allocated,
            backordered=remaining,
        )
        return outcome, lines

    @staticmethod
    def _derive_status(
        *,
        unmatched: int,
        total_allocated: int,
        total_backordered: int,
        allow_partial: bool,
    ) -> OrderStatus:
        if unmatched:
            return (
                OrderStatus.ON_HOLD if total_allocated == 0
                else OrderStatus.PARTIALLY_ALLOCATED
            )
        if total_allocated == 0:
            return OrderStatus.BACKORDERED
        if total_backordered > 0:
            return (
                OrderStatus.PARTIALLY_ALLOCATED if allow_partial
                else OrderStatus.BACKORDERED
            )
        return OrderStatus.ALLOCATED

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def allocate_orders(
        self, order_ids: Iterable[UUID], allow_partial: bool | None = None
    ) -> BatchAllocationResult:
        """
        Allocate several orders, each in its own savepoint.

        A per-order failure is captured in ``errors`` and the remaining
        orders proceed.  TransactionAbortError is not captured: the whole
        transaction must be retried.
        """
        buckets: dict[OrderStatus, list[UUID]] = {
            OrderStatus.ALLOCATED: [],
            OrderStatus.PARTIALLY_ALLOCATED: [],
            OrderStatus.BACKORDERED: [],
            OrderStatus.ON_HOLD: [],
        }
        errors: list[BatchAllocationError] = []
        results: list[AllocationResult] = []

        for order_id in dict.fromkeys(order_ids):
            try:
                with self._savepoint():
                    result = self.allocate_order(order_id, allow_partial)
            except TransactionAbortError:
                raise
            except FulfillmentKernelError as exc:
                logger.warning(
                    "order_allocation_failed",
                    extra={"order_id": str(order_id), "error_code": exc.code},
                )
                errors.append(
                    BatchAllocationError(order_id=order_id, code=exc.code, error=str(exc))
                )
                continue

            results.append(result)
            buckets[result.status].append(order_id)

        logger.info(
            "batch_allocation_completed",
            extra={
                "orders": len(results) + len(errors),
                "fully_allocated": len(buckets[OrderStatus.ALLOCATED]),
                "partially_allocated": len(buckets[OrderStatus.PARTIALLY_ALLOCATED]),
                "backordered": len(buckets[OrderStatus.BACKORDERED]),
                "on_hold": len(buckets[OrderStatus.ON_HOLD]),
                "errors": len(errors),
            },
        )

        return BatchAllocationResult(
            fully_allocated=tuple(buckets[OrderStatus.ALLOCATED]),
            partially_allocated=tuple(buckets[OrderStatus.PARTIALLY_ALLOCATED]),
            backordered=tuple(buckets[OrderStatus.BACKORDERED]),
            on_hold=tuple(buckets[OrderStatus.ON_HOLD]),
            errors=tuple(errors),
            results=tuple(results),
        )

    # ------------------------------------------------------------------
    # Release and backorders
    # ------------------------------------------------------------------

    def release_allocations(self, order_id: UUID) -> int:
        """
        Release every active reservation of an order.

        Postconditions:
            - PENDING / ALLOCATED / PARTIALLY_PICKED allocations are RELEASED
              with released_at stamped.
            - quantity_allocated of each affected line is recomputed.

        Returns:
            Number of allocations released.
        """
        order = self._orders.get(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)

        active = self._allocations.list_for_order(order.id, RELEASABLE_ALLOCATION_STATUSES)
        if not active:
            return 0

        now = self._clock.now()
        for allocation in active:
            assert_allocation_transition(
                AllocationStatus(allocation.status), AllocationStatus.RELEASED
            )
            allocation.status = AllocationStatus.RELEASED
            allocation.released_at = now
        self._allocations.flush()

        affected = {a.order_item_id for a in active}
        for item in order.items:
            if item.id in affected:
                item.quantity_allocated = min(
                    item.quantity,
                    self._allocations.sum_for_order_item(
                        item.id, COMMITTED_ALLOCATION_STATUSES
                    ),
                )
        self._orders.flush()

        released_quantity = sum(a.quantity for a in active)
        self._publisher.publish(
            make_event(
                self._clock,
                EventType.INVENTORY_RELEASED,
                order_id=str(order.id),
                order_number=order.order_number,
                allocations=[str(a.id) for a in active],
                quantity=released_quantity,
            )
        )
        logger.info(
            "allocations_released",
            extra={
                "order_id": str(order.id),
                "released": len(active),
                "quantity": released_quantity,
            },
        )
        return len(active)

    def check_backordered_orders(self, variant_id: UUID) -> list[UUID]:
        """Backordered or partially allocated orders wanting *variant_id*, oldest first."""
        return [o.id for o in self._orders.list_backordered_for_variant(variant_id)]

    def reallocate_backorders(
        self, variant_id: UUID, allow_partial: bool | None = None
    ) -> BatchAllocationResult:
        """Re-drive every waiting order for *variant_id* after a restock."""
        order_ids: Sequence[UUID] = self.check_backordered_orders(variant_id)
        logger.info(
            "backorder_reallocation_started",
            extra={"variant_id": str(variant_id), "orders": len(order_ids)},
        )
        return self.allocate_orders(order_ids, allow_partial)
