"""
WorkTaskService -- orchestrates warehouse labor over allocated orders.

Responsibility:
    Creates picking tasks from a set of orders (allocate, sequence the pick
    path, materialize task items), drives tasks through WORK_TASK_WORKFLOW,
    and records item-level pick confirmations, skips and scans.

Architecture position:
    Kernel > Services.  The orchestration entry point invoked by request
    handlers and by the job dispatcher.  Depends on AllocationService,
    InventoryLedger, OrderStatusProjection, PickBinService and
    SequenceService.

Invariants enforced:
    - Idempotent creation: one task per idempotency key.  A concurrent
      duplicate insert surfaces as TransactionAbortError, and the retried
      call returns the winner's task.
    - Every status change is checked against WORK_TASK_WORKFLOW.
    - Item confirmation validates before it mutates: task IN_PROGRESS,
      quantity non-negative, not above required, not above the unit's
      on-hand quantity.
    - A task with zero PENDING / IN_PROGRESS items is completed in the same
      transaction as its last item.
    - A completed picking task stages one pick bin per order that had
      stock picked, in that same transaction.
    - No task exists unless every order allocated cleanly and at least one
      reservation is left to pick.
    - A task item is resolved at most once; re-delivery of the same
      confirmation returns the recorded outcome.

Failure modes:
    - TaskNotFoundError / TaskItemNotFoundError / OrdersNotFoundError.
    - InvalidTransitionError on an illegal lifecycle move.
    - Conflict errors (see exceptions module) on bad item confirmations.

Audit relevance:
    Every lifecycle step and item resolution writes a TaskEvent row with the
    acting user and publishes a domain event after commit.
"""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from fulfillment_config.schema import PickPathSettings
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import ItemCompletionOutcome, ScanResult, TaskProgress
from fulfillment_kernel.domain.events import EventPublisher, EventType, make_event
from fulfillment_kernel.domain.pick_path import PickStop, sequence_pick_path
from fulfillment_kernel.domain.states import (
    OPEN_TASK_ITEM_STATUSES,
    AllocationStatus,
    OrderStatus,
    TaskItemStatus,
    WorkTaskBlockReason,
    WorkTaskStatus,
    assert_allocation_transition,
    assert_task_transition,
)
from fulfillment_kernel.exceptions import (
    AllocationFailedError,
    InsufficientUnitQuantityError,
    InvalidQuantityError,
    InvalidTransitionError,
    OrdersNotFoundError,
    OverPickError,
    TaskItemAlreadyResolvedError,
    TaskItemNotFoundError,
    TaskItemsPendingError,
    TaskNotAssignedToUserError,
    TaskNotFoundError,
    TaskNotInProgressError,
    TransactionAbortError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.allocation import Allocation
from fulfillment_kernel.models.inventory import InventoryUnit
from fulfillment_kernel.models.work_task import TaskEvent, TaskItem, TaskType, WorkTask
from fulfillment_kernel.repositories.interfaces import (
    AllocationRepository,
    InventoryRepository,
    OrderRepository,
    TaskItemRepository,
    WorkTaskRepository,
)
from fulfillment_kernel.services.allocation_service import AllocationService, Savepoint
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_status import OrderStatusProjection
from fulfillment_kernel.services.pick_bin_service import PickBinService
from fulfillment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.work_task")

_RESOLVED_ITEM_STATUSES = frozenset({TaskItemStatus.COMPLETED, TaskItemStatus.SHORT})

# Orders whose reservations are already complete skip re-allocation
_RESERVED_ORDER_STATUSES = frozenset({OrderStatus.ALLOCATED, OrderStatus.READY_TO_PICK})


class WorkTaskService:
    """
    Work task lifecycle and pick confirmation.

    Contract:
        Runs inside the caller's transaction (see FulfillmentEngine.run).
        Returned ORM objects stay readable after commit.

    Non-goals:
        - Does NOT run the short-pick escalation policy; ITEM_SHORT events
          are relayed to a HandleShortPick job.
        - Does NOT commit.
    """

    def __init__(
        self,
        tasks: WorkTaskRepository,
        task_items: TaskItemRepository,
        orders: OrderRepository,
        inventory: InventoryRepository,
        allocations: AllocationRepository,
        allocation_service: AllocationService,
        ledger: InventoryLedger,
        projection: OrderStatusProjection,
        pick_bins: PickBinService,
        sequences: SequenceService,
        clock: Clock,
        publisher: EventPublisher,
        pick_path: PickPathSettings,
        savepoint: Savepoint,
    ):
        self._tasks = tasks
        self._items = task_items
        self._orders = orders
        self._inventory = inventory
        self._allocations = allocations
        self._allocation_service = allocation_service
        self._ledger = ledger
        self._projection = projection
        self._pick_bins = pick_bins
        self._sequences = sequences
        self._clock = clock
        self._publisher = publisher
        self._pick_path = pick_path
        self._savepoint = savepoint

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_picking_task(
        self,
        order_ids: Iterable[UUID],
        idempotency_key: str,
        *,
        priority: int = 5,
        notes: str | None = None,
        created_by: str | None = None,
        allow_partial: bool | None = None,
    ) -> WorkTask:
        """
        Create a picking task for a set of orders.

        Steps:
            1. Return the existing task if *idempotency_key* was seen.
            2. Validate every order exists.
            3. Allocate the order set (one savepoint per order).  Orders
               already ALLOCATED / READY_TO_PICK keep their reservations.
               Any per-order failure, or nothing reserved at all, aborts
               before the task exists.
            4. Create the task with a ``PIC-YYYYMMDD-NNNN`` number.
            5. Materialize one task item per unlinked ALLOCATED allocation,
               in pick-path order, and link each allocation to its item.
            6. Record and publish TASK_CREATED.

        Raises:
            OrdersNotFoundError: Listing every missing order id.
            AllocationFailedError: An order failed allocation, or the order
                set has no unlinked reservation to pick.
            TransactionAbortError: A concurrent call won the key.
        """
        existing = self._tasks.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(
                "task_creation_deduplicated",
                extra={
                    "idempotency_key": idempotency_key,
                    "task_number": existing.task_number,
                },
            )
            return existing

        order_ids = list(dict.fromkeys(order_ids))
        if not order_ids:
            raise ValueError("A picking task needs at least one order")

        missing = self._orders.find_missing(order_ids)
        if missing:
            raise OrdersNotFoundError(missing)

        reserved = [
            order_id
            for order_id in order_ids
            if OrderStatus(self._orders.get(order_id).status) in _RESERVED_ORDER_STATUSES
        ]
        batch = self._allocation_service.allocate_orders(
            [o for o in order_ids if o not in reserved], allow_partial
        )
        if batch.errors:
            raise AllocationFailedError(
                order_ids, [(str(e.order_id), e.code, e.error) for e in batch.errors]
            )

        allocations = self._allocations.list_unlinked_for_orders(order_ids)
        if not allocations:
            raise AllocationFailedError(order_ids)
        by_id = {a.id: a for a in allocations}
        stops = sequence_pick_path(
            [self._pick_stop(a) for a in allocations],
            default_sequence=self._pick_path.default_sequence,
        )

        task = WorkTask(
            task_number=self._sequences.next_task_number(TaskType.PICKING.number_prefix),
            task_type=TaskType.PICKING,
            status=WorkTaskStatus.PENDING,
            priority=priority,
            idempotency_key=idempotency_key,
            order_ids=[str(o) for o in order_ids],
            total_orders=len(order_ids),
            total_items=len(stops),
            notes=notes,
        )
        try:
            with self._savepoint():
                self._tasks.add(task)
                self._tasks.flush()
        except IntegrityError as exc:
            logger.warning(
                "task_idempotency_race",
                extra={"idempotency_key": idempotency_key},
            )
            raise TransactionAbortError(
                "duplicate idempotency key", "create_picking_task"
            ) from exc

        with LogContext.bind(task_id=task.id):
            for stop in stops:
                allocation = by_id[stop.allocation_id]
                task.items.append(
                    TaskItem(
                        sequence=stop.sequence,
                        order_id=allocation.order_id,
                        order_item_id=allocation.order_item_id,
                        product_variant_id=allocation.product_variant_id,
                        location_id=allocation.location_id,
                        allocation_id=allocation.id,
                        quantity_required=allocation.quantity,
                        status=TaskItemStatus.PENDING,
                    )
                )
            self._tasks.flush()

            for item in task.items:
                by_id[item.allocation_id].task_item_id = item.id
            self._allocations.flush()

            data = {
                "order_ids": task.order_ids,
                "item_count": len(stops),
                "fully_allocated": len(batch.fully_allocated),
                "partially_allocated": len(batch.partially_allocated),
                "backordered": len(batch.backordered),
                "on_hold": len(batch.on_hold),
                "already_allocated": len(reserved),
            }
            self._record(task, EventType.TASK_CREATED, user_id=created_by, data=data)
            self._publish(task, EventType.TASK_CREATED, user_id=created_by, **data)

            logger.info(
                "task_created",
                extra={
                    "task_number": task.task_number,
                    "idempotency_key": idempotency_key,
                    "total_orders": task.total_orders,
                    "total_items": task.total_items,
                },
            )
        return task

    def _pick_stop(self, allocation: Allocation) -> PickStop:
        location = self._inventory.get_location(allocation.location_id)
        variant = self._inventory.get_variant(allocation.product_variant_id)
        return PickStop(
            allocation_id=allocation.id,
            location_id=allocation.location_id,
            location_name=location.name,
            zone=location.zone,
            pick_sequence=location.pick_sequence,
            sku=variant.sku,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def assign_task(self, task_id: UUID, user_id: str) -> WorkTask:
        task = self._require_task(task_id)
        self._change_status(task, WorkTaskStatus.ASSIGNED, EventType.TASK_ASSIGNED, user_id)
        task.assigned_to = user_id
        task.assigned_at = self._clock.now()
        self._tasks.flush()
        return task

    def unassign_task(self, task_id: UUID, user_id: str | None = None) -> WorkTask:
        task = self._require_task(task_id)
        previous = task.assigned_to
        self._change_status(
            task,
            WorkTaskStatus.PENDING,
            EventType.TASK_UNASSIGNED,
            user_id,
            previous_assignee=previous,
        )
        task.assigned_to = None
        task.assigned_at = None
        self._tasks.flush()
        return task

    def start_task(self, task_id: UUID, user_id: str) -> WorkTask:
        """ASSIGNED -> IN_PROGRESS; only the assignee may start."""
        task = self._require_task(task_id)
        assert_task_transition(WorkTaskStatus(task.status), WorkTaskStatus.IN_PROGRESS)
        if task.assigned_to != user_id:
            raise TaskNotAssignedToUserError(task.id, user_id, task.assigned_to)

        self._change_status(task, WorkTaskStatus.IN_PROGRESS, EventType.TASK_STARTED, user_id)
        if task.started_at is None:
            task.started_at = self._clock.now()
        self._tasks.flush()
        self._projection.on_task_started(task)
        return task

    def pause_task(self, task_id: UUID, user_id: str | None = None) -> WorkTask:
        task = self._require_task(task_id)
        self._change_status(task, WorkTaskStatus.PAUSED, EventType.TASK_PAUSED, user_id)
        task.paused_at = self._clock.now()
        self._tasks.flush()
        return task

    def resume_task(self, task_id: UUID, user_id: str | None = None) -> WorkTask:
        task = self._require_task(task_id)
        assert_task_transition(WorkTaskStatus(task.status), WorkTaskStatus.IN_PROGRESS)
        if WorkTaskStatus(task.status) != WorkTaskStatus.PAUSED:
            # BLOCKED -> IN_PROGRESS is unblock_task
            raise InvalidTransitionError(
                "work_task.resume", task.status, WorkTaskStatus.IN_PROGRESS
            )
        self._change_status(task, WorkTaskStatus.IN_PROGRESS, EventType.TASK_RESUMED, user_id)
        task.paused_at = None
        self._tasks.flush()
        return task

    def block_task(
        self,
        task_id: UUID,
        reason: WorkTaskBlockReason,
        notes: str | None = None,
        user_id: str | None = None,
    ) -> WorkTask:
        task = self._require_task(task_id)
        reason = WorkTaskBlockReason(reason)
        self._change_status(
            task,
            WorkTaskStatus.BLOCKED,
            EventType.TASK_BLOCKED,
            user_id,
            reason=reason.value,
            notes=notes,
        )
        task.block_reason = reason
        task.block_notes = notes
        task.blocked_at = self._clock.now()
        self._tasks.flush()
        return task

    def unblock_task(self, task_id: UUID, user_id: str | None = None) -> WorkTask:
        task = self._require_task(task_id)
        assert_task_transition(WorkTaskStatus(task.status), WorkTaskStatus.IN_PROGRESS)
        if WorkTaskStatus(task.status) != WorkTaskStatus.BLOCKED:
            raise InvalidTransitionError(
                "work_task.unblock", task.status, WorkTaskStatus.IN_PROGRESS
            )
        self._change_status(
            task,
            WorkTaskStatus.IN_PROGRESS,
            EventType.TASK_UNBLOCKED,
            user_id,
            previous_reason=(
                WorkTaskBlockReason(task.block_reason).value if task.block_reason else None
            ),
        )
        task.block_reason = None
        task.block_notes = None
        task.blocked_at = None
        self._tasks.flush()
        return task

    def complete_task(self, task_id: UUID, user_id: str | None = None) -> WorkTask:
        """
        IN_PROGRESS -> COMPLETED.

        Raises:
            TaskItemsPendingError: Items are still PENDING / IN_PROGRESS.
        """
        task = self._require_task(task_id)
        assert_task_transition(WorkTaskStatus(task.status), WorkTaskStatus.COMPLETED)
        open_items = self._items.count_open(task.id)
        if open_items:
            raise TaskItemsPendingError(task.id, open_items)
        self._complete(task, user_id)
        return task

    def cancel_task(
        self, task_id: UUID, user_id: str | None = None, reason: str | None = None
    ) -> WorkTask:
        """Cancel a non-terminal task and release its orders' reservations."""
        task = self._require_task(task_id)
        assert_task_transition(WorkTaskStatus(task.status), WorkTaskStatus.CANCELLED)

        released = 0
        if TaskType(task.task_type) == TaskType.PICKING:
            for order_id in task.order_uuids:
                released += self._allocation_service.release_allocations(order_id)

        self._change_status(
            task,
            WorkTaskStatus.CANCELLED,
            EventType.TASK_CANCELLED,
            user_id,
            reason=reason,
            released_allocations=released,
        )
        task.cancelled_at = self._clock.now()
        task.cancel_reason = reason
        self._tasks.flush()
        self._projection.on_task_cancelled(task)
        return task

    def _complete(self, task: WorkTask, user_id: str | None) -> None:
        self._change_status(
            task,
            WorkTaskStatus.COMPLETED,
            EventType.TASK_COMPLETED,
            user_id,
            completed_items=task.completed_items,
            short_items=task.short_items,
            skipped_items=task.skipped_items,
        )
        task.completed_at = self._clock.now()
        self._tasks.flush()
        self._projection.on_task_completed(task)
        if TaskType(task.task_type) == TaskType.PICKING:
            self._consolidate(task, user_id)

    def _consolidate(self, task: WorkTask, user_id: str | None) -> None:
        """One pick bin per order that had anything picked, in task order."""
        picked_orders = {
            item.order_id
            for item in self._items.list_for_task(task.id)
            if TaskItemStatus(item.status) in _RESOLVED_ITEM_STATUSES
            and item.quantity_completed > 0
        }
        for order_id in task.order_uuids:
            if order_id in picked_orders:
                self._pick_bins.create_pick_bin(task.id, order_id, picked_by=user_id)

    def _change_status(
        self,
        task: WorkTask,
        target: WorkTaskStatus,
        event_type: EventType,
        user_id: str | None,
        **data: Any,
    ) -> None:
        current = WorkTaskStatus(task.status)
        assert_task_transition(current, target)
        task.status = target

        data = {"from_status": current.value, "to_status": target.value, **data}
        self._record(task, event_type, user_id=user_id, data=data)
        self._publish(task, event_type, user_id=user_id, **data)

        logger.info(
            "task_status_changed",
            extra={
                "task_id": str(task.id),
                "task_number": task.task_number,
                "from_status": current.value,
                "to_status": target.value,
                "user_id": user_id,
            },
        )

    # ------------------------------------------------------------------
    # Item confirmation
    # ------------------------------------------------------------------

    def record_item_completion(
        self, task_item_id: UUID, user_id: str, actual_quantity: int
    ) -> ItemCompletionOutcome:
        """
        Confirm a pick of *actual_quantity* for one task item.

        Postconditions:
            - Item COMPLETED (actual == required) or SHORT (actual < required).
            - Task completed_items incremented, short_items too if short.
            - Linked allocation PICKED with picked_quantity = actual.  It keeps
              its full quantity reserved, so the unit quantity is unchanged
              and a shortfall never becomes free stock.
            - Order line quantity_picked incremented.
            - Task COMPLETED when no open items remain.

        Raises:
            TaskItemAlreadyResolvedError: Item already resolved differently.
            TaskNotInProgressError, InvalidQuantityError, OverPickError,
            InsufficientUnitQuantityError: before any mutation.
        """
        item = self._require_item(task_item_id)
        task = self._require_task(item.task_id)
        status = TaskItemStatus(item.status)

        if status in _RESOLVED_ITEM_STATUSES:
            if item.quantity_completed == actual_quantity:
                logger.info(
                    "item_completion_redelivered",
                    extra={"task_item_id": str(item.id), "quantity": actual_quantity},
                )
                return self._outcome(item, task)
            raise TaskItemAlreadyResolvedError(item.id, status)
        if status == TaskItemStatus.SKIPPED:
            raise TaskItemAlreadyResolvedError(item.id, status)

        if WorkTaskStatus(task.status) != WorkTaskStatus.IN_PROGRESS:
            raise TaskNotInProgressError(task.id, task.status)
        if actual_quantity < 0:
            raise InvalidQuantityError(actual_quantity, "pick quantity cannot be negative")
        if actual_quantity > item.quantity_required:
            raise OverPickError(item.id, actual_quantity, item.quantity_required)

        allocation: Allocation | None = None
        unit: InventoryUnit | None = None
        if item.allocation_id is not None:
            allocation = self._allocations.get(item.allocation_id)
            if allocation is not None:
                assert_allocation_transition(
                    AllocationStatus(allocation.status), AllocationStatus.PICKED
                )
                unit = self._inventory.get_unit(allocation.inventory_unit_id, for_update=True)
                if unit is not None and actual_quantity > unit.quantity:
                    raise InsufficientUnitQuantityError(
                        unit.id, actual_quantity, unit.quantity
                    )

        with LogContext.bind(task_id=task.id):
            now = self._clock.now()
            short = actual_quantity < item.quantity_required
            shortage = item.quantity_required - actual_quantity

            item.quantity_completed = actual_quantity
            item.status = TaskItemStatus.SHORT if short else TaskItemStatus.COMPLETED
            item.completed_by = user_id
            item.completed_at = now
            if short:
                item.short_reason = (
                    f"Short pick: {actual_quantity}/{item.quantity_required}"
                    if actual_quantity > 0
                    else "Insufficient quantity at location"
                )

            task.completed_items += 1
            if short:
                task.short_items += 1

            if allocation is not None:
                allocation.status = AllocationStatus.PICKED
                allocation.picked_quantity = actual_quantity
                allocation.picked_at = now
                self._allocations.flush()
                if unit is not None:
                    self._ledger.record_pick(unit, actual_quantity)
                self._publisher.publish(
                    make_event(
                        self._clock,
                        EventType.INVENTORY_PICKED,
                        allocation_id=str(allocation.id),
                        inventory_unit_id=str(allocation.inventory_unit_id),
                        order_id=str(allocation.order_id),
                        quantity=actual_quantity,
                    )
                )

            if item.order_item_id is not None:
                order = self._orders.get(item.order_id)
                for line in order.items:
                    if line.id == item.order_item_id:
                        line.quantity_picked += actual_quantity
            self._items.flush()

            event_type = EventType.ITEM_SHORT if short else EventType.ITEM_COMPLETED
            data = {
                "task_item_id": str(item.id),
                "order_id": str(item.order_id),
                "location_id": str(item.location_id),
                "product_variant_id": str(item.product_variant_id),
                "quantity_required": item.quantity_required,
                "quantity_completed": actual_quantity,
                "shortage": shortage,
            }
            self._record(task, event_type, user_id=user_id, task_item_id=item.id, data=data)
            self._publish(task, event_type, user_id=user_id, **data)

            logger.info(
                "item_short" if short else "item_completed",
                extra={
                    "task_item_id": str(item.id),
                    "quantity_required": item.quantity_required,
                    "quantity_completed": actual_quantity,
                },
            )

            if self._items.count_open(task.id) == 0:
                self._complete(task, user_id)

        return self._outcome(item, task)

    def skip_item(self, task_item_id: UUID, user_id: str, reason: str) -> ItemCompletionOutcome:
        """
        Mark an item SKIPPED.  The allocation is left reserved for manual
        resolution.
        """
        item = self._require_item(task_item_id)
        task = self._require_task(item.task_id)
        status = TaskItemStatus(item.status)

        if status == TaskItemStatus.SKIPPED:
            return self._outcome(item, task)
        if status in _RESOLVED_ITEM_STATUSES:
            raise TaskItemAlreadyResolvedError(item.id, status)
        if WorkTaskStatus(task.status) != WorkTaskStatus.IN_PROGRESS:
            raise TaskNotInProgressError(task.id, task.status)

        with LogContext.bind(task_id=task.id):
            item.status = TaskItemStatus.SKIPPED
            item.skip_reason = reason
            item.completed_by = user_id
            item.completed_at = self._clock.now()
            task.skipped_items += 1
            self._items.flush()

            data = {
                "task_item_id": str(item.id),
                "order_id": str(item.order_id),
                "location_id": str(item.location_id),
                "reason": reason,
            }
            self._record(task, EventType.ITEM_SKIPPED, user_id=user_id, task_item_id=item.id, data=data)
            self._publish(task, EventType.ITEM_SKIPPED, user_id=user_id, **data)
            logger.info("item_skipped", extra={"task_item_id": str(item.id), "reason": reason})

            if self._items.count_open(task.id) == 0:
                self._complete(task, user_id)

        return self._outcome(item, task)

    def _outcome(self, item: TaskItem, task: WorkTask) -> ItemCompletionOutcome:
        status = TaskItemStatus(item.status)
        return ItemCompletionOutcome(
            complete=status == TaskItemStatus.COMPLETED,
            short=status == TaskItemStatus.SHORT,
            task_complete=WorkTaskStatus(task.status) == WorkTaskStatus.COMPLETED,
            task_item_id=item.id,
            quantity_completed=item.quantity_completed,
            shortage=(
                item.quantity_required - item.quantity_completed
                if status == TaskItemStatus.SHORT
                else 0
            ),
        )

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def get_next_item(self, task_id: UUID) -> TaskItem | None:
        self._require_task(task_id)
        return self._items.next_open(task_id)

    def verify_location_scan(self, task_item_id: UUID, barcode: str) -> ScanResult:
        item = self._require_open_item(task_item_id)
        location = self._inventory.get_location(item.location_id)
        matched = location.matches_barcode(barcode)
        if matched:
            item.location_scanned = True
            self._touch(item)
        return ScanResult(
            task_item_id=item.id,
            matched=matched,
            expected=location.barcode or location.name,
            scanned=barcode,
        )

    def verify_item_scan(self, task_item_id: UUID, barcode: str) -> ScanResult:
        item = self._require_open_item(task_item_id)
        variant = self._inventory.get_variant(item.product_variant_id)
        matched = variant.matches_barcode(barcode)
        if matched:
            item.item_scanned = True
            self._touch(item)
        return ScanResult(
            task_item_id=item.id,
            matched=matched,
            expected=variant.sku,
            scanned=barcode,
        )

    def _touch(self, item: TaskItem) -> None:
        if TaskItemStatus(item.status) == TaskItemStatus.PENDING:
            item.status = TaskItemStatus.IN_PROGRESS
        self._items.flush()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: UUID) -> WorkTask:
        return self._require_task(task_id, for_update=False)

    def get_task_items(self, task_id: UUID) -> list[TaskItem]:
        self._require_task(task_id, for_update=False)
        return self._items.list_for_task(task_id)

    def get_task_events(self, task_id: UUID) -> list[TaskEvent]:
        self._require_task(task_id, for_update=False)
        return self._tasks.list_events(task_id)

    def get_task_progress(self, task_id: UUID) -> TaskProgress:
        task = self._require_task(task_id, for_update=False)
        return TaskProgress(
            task_id=task.id,
            task_number=task.task_number,
            status=WorkTaskStatus(task.status),
            total_items=task.total_items,
            completed_items=task.completed_items,
            short_items=task.short_items,
            skipped_items=task.skipped_items,
            open_items=self._items.count_open(task.id),
            total_orders=task.total_orders,
            completed_orders=task.completed_orders,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_task(self, task_id: UUID, *, for_update: bool = True) -> WorkTask:
        task = self._tasks.get(task_id, for_update=for_update)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _require_item(self, task_item_id: UUID) -> TaskItem:
        item = self._items.get(task_item_id, for_update=True)
        if item is None:
            raise TaskItemNotFoundError(task_item_id)
        return item

    def _require_open_item(self, task_item_id: UUID) -> TaskItem:
        item = self._require_item(task_item_id)
        if TaskItemStatus(item.status) not in OPEN_TASK_ITEM_STATUSES:
            raise TaskItemAlreadyResolvedError(item.id, item.status)
        return item

    def _record(
        self,
        task: WorkTask,
        event_type: EventType,
        *,
        user_id: str | None,
        task_item_id: UUID | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self._tasks.add_event(
            TaskEvent(
                task_id=task.id,
                event_type=event_type.value,
                user_id=user_id,
                task_item_id=task_item_id,
                data=data or {},
                occurred_at=self._clock.now(),
            )
        )

    def _publish(
        self, task: WorkTask, event_type: EventType, *, user_id: str | None, **data: Any
    ) -> None:
        self._publisher.publish(
            make_event(
                self._clock,
                event_type,
                task_id=str(task.id),
                task_number=task.task_number,
                user_id=user_id,
                **data,
            )
        )
