"""
OrderStatusProjection -- the one place order status changes.

Responsibility:
    Moves orders along ORDER_WORKFLOW in response to allocation outcomes,
    operator holds and work-task lifecycle steps, and emits
    ORDER_STATUS_CHANGED for every real change.

Architecture position:
    Kernel > Services.  Called by AllocationService and WorkTaskService.

Invariants enforced:
    - Every change is checked against ORDER_WORKFLOW; an illegal move raises
      InvalidTransitionError naming both states.
    - Moving to the current status is a no-op and emits nothing.
    - hold_reason / hold_at are set on entering ON_HOLD and cleared on
      leaving it.
"""

from uuid import UUID

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.events import EventPublisher, EventType, make_event
from fulfillment_kernel.domain.states import OrderStatus, assert_order_transition
from fulfillment_kernel.exceptions import OrderNotFoundError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.models.work_task import TaskType, WorkTask
from fulfillment_kernel.repositories.interfaces import OrderRepository

logger = get_logger("services.order_status")

_PICKABLE = frozenset({
    OrderStatus.ALLOCATED,
    OrderStatus.PARTIALLY_ALLOCATED,
    OrderStatus.READY_TO_PICK,
})

_RELEASABLE = _PICKABLE | {OrderStatus.PICKING}


class OrderStatusProjection:
    """Applies validated order status transitions."""

    def __init__(
        self,
        orders: OrderRepository,
        clock: Clock,
        publisher: EventPublisher,
    ):
        self._orders = orders
        self._clock = clock
        self._publisher = publisher

    def transition(
        self,
        order: Order,
        target: OrderStatus,
        *,
        hold_reason: str | None = None,
    ) -> bool:
        """
        Move *order* to *target*.

        Returns:
            True if the status changed, False for a same-state no-op.

        Raises:
            InvalidTransitionError: If ORDER_WORKFLOW has no such edge.
        """
        current = OrderStatus(order.status)
        if current == target:
            if target == OrderStatus.ON_HOLD and hold_reason:
                order.hold_reason = hold_reason
            return False

        assert_order_transition(current, target)

        order.status = target
        if target == OrderStatus.ON_HOLD:
            order.hold_reason = hold_reason
            order.hold_at = self._clock.now()
        elif current == OrderStatus.ON_HOLD:
            order.hold_reason = None
            order.hold_at = None
        self._orders.flush()

        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        self._publisher.publish(
            make_event(
                self._clock,
                EventType.ORDER_STATUS_CHANGED,
                order_id=str(order.id),
                order_number=order.order_number,
                from_status=current.value,
                to_status=target.value,
                hold_reason=order.hold_reason,
            )
        )
        return True

    def place_on_hold(self, order_id: UUID, reason: str) -> Order:
        order = self._require(order_id)
        self.transition(order, OrderStatus.ON_HOLD, hold_reason=reason)
        return order

    def release_hold(
        self, order_id: UUID, target: OrderStatus = OrderStatus.CONFIRMED
    ) -> Order:
        order = self._require(order_id)
        self.transition(order, target)
        return order

    # ------------------------------------------------------------------
    # Work-task hooks
    # ------------------------------------------------------------------

    def on_task_started(self, task: WorkTask) -> int:
        """Orders of a picking task that are ready to pick move to PICKING."""
        return self._move_task_orders(task, _PICKABLE, OrderStatus.PICKING)

    def on_task_completed(self, task: WorkTask) -> int:
        """Orders still PICKING move to PICKED; sets task.completed_orders."""
        moved = self._move_task_orders(
            task, frozenset({OrderStatus.PICKING}), OrderStatus.PICKED
        )
        if self._is_picking(task):
            task.completed_orders = sum(
                1
                for order in self._task_orders(task)
                if OrderStatus(order.status) == OrderStatus.PICKED
            )
        return moved

    def on_task_cancelled(self, task: WorkTask) -> int:
        """Orders return to CONFIRMED so they can be re-allocated."""
        return self._move_task_orders(task, _RELEASABLE, OrderStatus.CONFIRMED)

    def _move_task_orders(
        self,
        task: WorkTask,
        from_statuses: frozenset[OrderStatus],
        target: OrderStatus,
    ) -> int:
        if not self._is_picking(task):
            return 0
        moved = 0
        for order in self._task_orders(task):
            if OrderStatus(order.status) in from_statuses:
                moved += int(self.transition(order, target))
        return moved

    def _task_orders(self, task: WorkTask) -> list[Order]:
        orders = []
        for order_id in task.order_uuids:
            order = self._orders.get(order_id, for_update=True)
            if order is not None:
                orders.append(order)
        return orders

    @staticmethod
    def _is_picking(task: WorkTask) -> bool:
        return TaskType(task.task_type) == TaskType.PICKING

    def _require(self, order_id: UUID) -> Order:
        order = self._orders.get(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order
