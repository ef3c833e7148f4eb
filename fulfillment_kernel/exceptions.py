"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Queue workers and request handlers decide whether to retry, surface or
ignore a failure.  They must do so by catching a TYPE, never by parsing a
message string:

    try:
        engine.run(lambda uow: uow.work_tasks.start_task(task_id, user_id))
    except TransactionAbortError:
        retry_with_same_idempotency_key()
    except InvalidTransitionError as e:
        api_response(code=e.code, current=e.from_state, requested=e.to_state)

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FulfillmentKernelError:

    FulfillmentKernelError (base)
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- OrdersNotFoundError
    |   +-- TaskNotFoundError
    |   +-- TaskItemNotFoundError
    |   +-- InventoryUnitNotFoundError
    |   +-- LocationNotFoundError
    |   +-- PickBinNotFoundError
    |   +-- BinItemNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- ConflictError
    |   +-- OrderNotAllocatableError
    |   +-- AllocationFailedError
    |   +-- TaskNotAssignedToUserError
    |   +-- TaskNotInProgressError
    |   +-- TaskItemsPendingError
    |   +-- TaskItemAlreadyResolvedError
    |   +-- InvalidQuantityError
    |   +-- OverPickError
    |   +-- InsufficientUnitQuantityError
    |   +-- TaskNotCompletedError
    |   +-- BinIncompleteError
    |   +-- BinClosedError
    |
    +-- TransactionAbortError
    |
    +-- JobError
        +-- JobRetriesExhaustedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|-----------------------------------
NotFound     | ORDER_NOT_FOUND              | Order id doesn't exist
             | ORDERS_NOT_FOUND             | Task creation references missing orders
             | TASK_NOT_FOUND               | Work task id doesn't exist
             | TASK_ITEM_NOT_FOUND          | Task item id doesn't exist
             | INVENTORY_UNIT_NOT_FOUND     | Inventory unit id doesn't exist
             | LOCATION_NOT_FOUND           | Location id doesn't exist
             | PICK_BIN_NOT_FOUND           | Bin id or barcode doesn't exist
             | BIN_ITEM_NOT_FOUND           | Scanned barcode matches no bin item
-------------|------------------------------|-----------------------------------
Transition   | INVALID_TRANSITION           | Illegal state-machine move
-------------|------------------------------|-----------------------------------
Conflict     | ORDER_NOT_ALLOCATABLE        | Order status excludes allocation
             | TASK_NOT_ASSIGNED_TO_USER    | Start by someone other than assignee
             | TASK_NOT_IN_PROGRESS         | Item work on a task not in progress
             | TASK_ITEMS_PENDING           | Completing with open items
             | TASK_ITEM_ALREADY_RESOLVED   | Item already completed or skipped
             | INVALID_QUANTITY             | Negative pick quantity
             | OVER_PICK                    | Picked more than required
             | INSUFFICIENT_UNIT_QUANTITY   | Picked more than the unit holds
             | TASK_NOT_COMPLETED           | Bin requested before task completion
             | BIN_INCOMPLETE               | Bin completion with unverified items
             | BIN_CLOSED                   | Scanning a completed/cancelled bin
-------------|------------------------------|-----------------------------------
Storage      | TRANSACTION_ABORTED          | Deadlock / serialization / lock timeout
-------------|------------------------------|-----------------------------------
Jobs         | JOB_RETRIES_EXHAUSTED        | Retryable job failed on every attempt

Stock shortage is NOT an exception: allocation reports it as backordered
quantity in its result.

===============================================================================
"""

from typing import Sequence


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(FulfillmentKernelError):
    """Base exception for missing records. Surfaced to the caller, never retried."""

    code: str = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = str(order_id)
        super().__init__(f"Order not found: {order_id}")


class OrdersNotFoundError(NotFoundError):
    """One or more orders referenced by a task request do not exist."""

    code: str = "ORDERS_NOT_FOUND"

    def __init__(self, order_ids: Sequence[str]):
        self.order_ids = [str(o) for o in order_ids]
        super().__init__(f"Orders not found: {', '.join(self.order_ids)}")


class TaskNotFoundError(NotFoundError):
    """Work task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = str(task_id)
        super().__init__(f"Task not found: {task_id}")


class TaskItemNotFoundError(NotFoundError):
    """Task item with given ID was not found."""

    code: str = "TASK_ITEM_NOT_FOUND"

    def __init__(self, task_item_id: str):
        self.task_item_id = str(task_item_id)
        super().__init__(f"Task item not found: {task_item_id}")


class InventoryUnitNotFoundError(NotFoundError):
    """Inventory unit with given ID was not found."""

    code: str = "INVENTORY_UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = str(unit_id)
        super().__init__(f"Inventory unit not found: {unit_id}")


class LocationNotFoundError(NotFoundError):
    """Location with given ID was not found."""

    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: str):
        self.location_id = str(location_id)
        super().__init__(f"Location not found: {location_id}")


class PickBinNotFoundError(NotFoundError):
    """Pick bin with given ID or barcode was not found."""

    code: str = "PICK_BIN_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = str(reference)
        super().__init__(f"Pick bin not found: {reference}")


class BinItemNotFoundError(NotFoundError):
    """A scanned barcode matched no item in the bin."""

    code: str = "BIN_ITEM_NOT_FOUND"

    def __init__(self, bin_id: str, barcode: str):
        self.bin_id = str(bin_id)
        self.barcode = barcode
        super().__init__(f"Item {barcode} not found in bin {bin_id}")


# State machine exceptions


class InvalidTransitionError(FulfillmentKernelError):
    """
    Illegal state-machine move.

    Indicates a caller or UI bug; not retried automatically.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_state: str, to_state: str):
        self.entity = entity
        self.from_state = str(getattr(from_state, "value", from_state))
        self.to_state = str(getattr(to_state, "value", to_state))
        super().__init__(
            f"Invalid {entity} transition: {self.from_state} -> {self.to_state}"
        )


# Conflict exceptions (validation failures detected before mutation)


class ConflictError(FulfillmentKernelError):
    """Base exception for requests that conflict with current state."""

    code: str = "CONFLICT"


class OrderNotAllocatableError(ConflictError):
    """Order status does not permit allocation."""

    code: str = "ORDER_NOT_ALLOCATABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = str(order_id)
        self.status = str(getattr(status, "value", status))
        super().__init__(
            f"Order {order_id} cannot be allocated (status {self.status})"
        )


class AllocationFailedError(ConflictError):
    """A picking task was requested but its orders could not be reserved."""

    code: str = "ALLOCATION_FAILED"

    def __init__(self, order_ids: list, errors: list[tuple[str, str, str]] | None = None):
        self.order_ids = [str(o) for o in order_ids]
        self.errors = list(errors or [])
        if self.errors:
            detail = ", ".join(message for _, _, message in self.errors)
        else:
            detail = f"no inventory reserved for orders {', '.join(self.order_ids)}"
        super().__init__(f"Allocation failed: {detail}")


class TaskNotAssignedToUserError(ConflictError):
    """Only the assignee may start a task."""

    code: str = "TASK_NOT_ASSIGNED_TO_USER"

    def __init__(self, task_id: str, user_id: str, assigned_to: str | None):
        self.task_id = str(task_id)
        self.user_id = user_id
        self.assigned_to = assigned_to
        super().__init__(
            f"Task {task_id} is assigned to {assigned_to}, not {user_id}"
        )


class TaskNotInProgressError(ConflictError):
    """Item-level work requires the task to be IN_PROGRESS."""

    code: str = "TASK_NOT_IN_PROGRESS"

    def __init__(self, task_id: str, status: str):
        self.task_id = str(task_id)
        self.status = str(getattr(status, "value", status))
        super().__init__(f"Task {task_id} is not in progress (status {self.status})")


class TaskItemsPendingError(ConflictError):
    """A task cannot complete while items remain open."""

    code: str = "TASK_ITEMS_PENDING"

    def __init__(self, task_id: str, open_items: int):
        self.task_id = str(task_id)
        self.open_items = open_items
        super().__init__(
            f"Task {task_id} has {open_items} item(s) still pending"
        )


class TaskItemAlreadyResolvedError(ConflictError):
    """Task item was already completed, shorted or skipped."""

    code: str = "TASK_ITEM_ALREADY_RESOLVED"

    def __init__(self, task_item_id: str, status: str):
        self.task_item_id = str(task_item_id)
        self.status = str(getattr(status, "value", status))
        super().__init__(
            f"Task item {task_item_id} is already resolved (status {self.status})"
        )


class InvalidQuantityError(ConflictError):
    """Quantity argument is negative or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class OverPickError(ConflictError):
    """Reported pick quantity exceeds what the task item requires."""

    code: str = "OVER_PICK"

    def __init__(self, task_item_id: str, actual: int, required: int):
        self.task_item_id = str(task_item_id)
        self.actual = actual
        self.required = required
        super().__init__(
            f"Task item {task_item_id}: picked {actual} exceeds required {required}"
        )


class InsufficientUnitQuantityError(ConflictError):
    """Pick quantity exceeds the quantity recorded on the inventory unit."""

    code: str = "INSUFFICIENT_UNIT_QUANTITY"

    def __init__(self, unit_id: str, requested: int, on_hand: int):
        self.unit_id = str(unit_id)
        self.requested = requested
        self.on_hand = on_hand
        super().__init__(
            f"Inventory unit {unit_id} holds {on_hand}, cannot pick {requested}"
        )


class TaskNotCompletedError(ConflictError):
    """A pick bin can only be built from a completed picking task."""

    code: str = "TASK_NOT_COMPLETED"

    def __init__(self, task_id: str, status: str):
        self.task_id = str(task_id)
        self.status = str(getattr(status, "value", status))
        super().__init__(
            f"Task {task_id} is not a completed picking task (status {self.status})"
        )


class BinIncompleteError(ConflictError):
    """Bin completion attempted while items are not fully verified."""

    code: str = "BIN_INCOMPLETE"

    def __init__(self, bin_id: str, unverified_skus: Sequence[str]):
        self.bin_id = str(bin_id)
        self.unverified_skus = list(unverified_skus)
        super().__init__(
            f"Bin {bin_id} has unverified items: {', '.join(self.unverified_skus)}"
        )


class BinClosedError(ConflictError):
    """Bin is already completed or cancelled."""

    code: str = "BIN_CLOSED"

    def __init__(self, bin_id: str, status: str):
        self.bin_id = str(bin_id)
        self.status = str(getattr(status, "value", status))
        super().__init__(f"Bin {bin_id} is closed (status {self.status})")


# Storage exceptions


class TransactionAbortError(FulfillmentKernelError):
    """
    Storage-layer conflict (deadlock, serialization failure, lock timeout).

    Retryable: every entry point is idempotent, so the caller re-runs the
    operation with the same input.
    """

    code: str = "TRANSACTION_ABORTED"

    def __init__(self, reason: str, operation: str | None = None):
        self.reason = reason
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}transaction aborted ({reason})")


# Job exceptions


class JobError(FulfillmentKernelError):
    """Base exception for queue job execution errors."""

    code: str = "JOB_ERROR"


class JobRetriesExhaustedError(JobError):
    """A retryable job failed on every allowed attempt."""

    code: str = "JOB_RETRIES_EXHAUSTED"

    def __init__(self, job_type: str, attempts: int, last_error: str):
        self.job_type = job_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Job {job_type} failed after {attempts} attempt(s): {last_error}"
        )
