"""
Lifecycle states and legal transitions (``fulfillment_kernel.domain.states``).

Responsibility
--------------
Declares the status enums of every stateful entity and the workflow that
governs each: orders, work tasks, pick bins and allocations.  Exposes pure
functions ``legal_next_states`` / ``can_transition`` / ``assert_transition``
/ ``is_terminal`` per machine, testable without a database.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Imported by models (column enums) and by
services (transition enforcement).

Invariants enforced
-------------------
* Any (from, to) pair absent from a table raises InvalidTransitionError
  naming both states.
* COMPLETED and CANCELLED work tasks, COMPLETED and CANCELLED pick bins,
  DELIVERED and CANCELLED orders, and PICKED / RELEASED / CANCELLED
  allocations accept no further transitions.
"""

from __future__ import annotations

from enum import Enum

from fulfillment_kernel.domain.workflow import Transition, Workflow


def _edges(table: dict) -> tuple[Transition, ...]:
    return tuple(
        Transition(from_state=src, to_state=dst, action=action)
        for src, targets in table.items()
        for dst, action in targets.items()
    )


# =============================================================================
# Work tasks
# =============================================================================


class WorkTaskStatus(str, Enum):
    """Lifecycle status of a unit of warehouse labor."""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class WorkTaskBlockReason(str, Enum):
    """Closed set of reasons recorded with a BLOCKED transition."""

    SHORT_PICK = "SHORT_PICK"
    LOCATION_EMPTY = "LOCATION_EMPTY"
    DAMAGED_INVENTORY = "DAMAGED_INVENTORY"
    PICKER_TIMEOUT = "PICKER_TIMEOUT"
    SUPERVISOR_HOLD = "SUPERVISOR_HOLD"
    EQUIPMENT_ISSUE = "EQUIPMENT_ISSUE"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class TaskItemStatus(str, Enum):
    """Status of one line of work within a task."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    SHORT = "SHORT"


OPEN_TASK_ITEM_STATUSES = frozenset(
    {TaskItemStatus.PENDING, TaskItemStatus.IN_PROGRESS}
)

_W = WorkTaskStatus

WORK_TASK_WORKFLOW: Workflow[WorkTaskStatus] = Workflow(
    name="work_task",
    initial_state=_W.PENDING,
    states=tuple(WorkTaskStatus),
    transitions=_edges({
        _W.PENDING: {_W.ASSIGNED: "assign", _W.CANCELLED: "cancel"},
        _W.ASSIGNED: {
            _W.IN_PROGRESS: "start",
            _W.PENDING: "unassign",
            _W.CANCELLED: "cancel",
        },
        _W.IN_PROGRESS: {
            _W.COMPLETED: "complete",
            _W.BLOCKED: "block",
            _W.PAUSED: "pause",
            _W.CANCELLED: "cancel",
        },
        _W.BLOCKED: {_W.IN_PROGRESS: "unblock", _W.CANCELLED: "cancel"},
        _W.PAUSED: {_W.IN_PROGRESS: "resume", _W.CANCELLED: "cancel"},
    }),
)

_ACTIVE_TASK_STATES = frozenset(
    {_W.ASSIGNED, _W.IN_PROGRESS, _W.BLOCKED, _W.PAUSED}
)


def legal_next_task_states(state: WorkTaskStatus) -> frozenset[WorkTaskStatus]:
    return WORK_TASK_WORKFLOW.legal_next_states(state)


def can_transition_task(src: WorkTaskStatus, dst: WorkTaskStatus) -> bool:
    return WORK_TASK_WORKFLOW.can_transition(src, dst)


def assert_task_transition(src: WorkTaskStatus, dst: WorkTaskStatus) -> None:
    WORK_TASK_WORKFLOW.assert_transition(src, dst)


def is_task_terminal(state: WorkTaskStatus) -> bool:
    return WORK_TASK_WORKFLOW.is_terminal(state)


def is_task_active(state: WorkTaskStatus) -> bool:
    """True while someone owns the task and it is not finished."""
    return state in _ACTIVE_TASK_STATES


# =============================================================================
# Orders
# =============================================================================


class OrderStatus(str, Enum):
    """Externally visible order status."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ALLOCATED = "ALLOCATED"
    PARTIALLY_ALLOCATED = "PARTIALLY_ALLOCATED"
    BACKORDERED = "BACKORDERED"
    READY_TO_PICK = "READY_TO_PICK"
    PICKING = "PICKING"
    PICKED = "PICKED"
    PACKING = "PACKING"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


class OrderHoldReason(str, Enum):
    """Standard reasons an operator places an order on hold."""

    PAYMENT_PENDING = "PAYMENT_PENDING"
    CREDIT_HOLD = "CREDIT_HOLD"
    FRAUD_REVIEW = "FRAUD_REVIEW"
    ADDRESS_VERIFICATION = "ADDRESS_VERIFICATION"
    INVENTORY_SHORTAGE = "INVENTORY_SHORTAGE"
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"


_O = OrderStatus

ALLOCATABLE_ORDER_STATUSES = frozenset(
    {_O.PENDING, _O.CONFIRMED, _O.BACKORDERED, _O.PARTIALLY_ALLOCATED}
)

BACKORDER_STATUSES = frozenset({_O.BACKORDERED, _O.PARTIALLY_ALLOCATED})

ORDER_WORKFLOW: Workflow[OrderStatus] = Workflow(
    name="order",
    initial_state=_O.PENDING,
    states=tuple(OrderStatus),
    transitions=_edges({
        _O.PENDING: {
            _O.CONFIRMED: "confirm",
            _O.ALLOCATED: "allocate",
            _O.PARTIALLY_ALLOCATED: "allocate",
            _O.BACKORDERED: "backorder",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.CONFIRMED: {
            _O.READY_TO_PICK: "release_to_floor",
            _O.ALLOCATED: "allocate",
            _O.PARTIALLY_ALLOCATED: "allocate",
            _O.BACKORDERED: "backorder",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.ALLOCATED: {
            _O.READY_TO_PICK: "release_to_floor",
            _O.PICKING: "start_picking",
            _O.CONFIRMED: "release_allocations",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.PARTIALLY_ALLOCATED: {
            _O.ALLOCATED: "allocate",
            _O.BACKORDERED: "backorder",
            _O.READY_TO_PICK: "release_to_floor",
            _O.PICKING: "start_picking",
            _O.CONFIRMED: "release_allocations",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.BACKORDERED: {
            _O.ALLOCATED: "allocate",
            _O.PARTIALLY_ALLOCATED: "allocate",
            _O.CONFIRMED: "release_allocations",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.READY_TO_PICK: {
            _O.PICKING: "start_picking",
            _O.CONFIRMED: "release_allocations",
            _O.ON_HOLD: "hold",
            _O.CANCELLED: "cancel",
        },
        _O.PICKING: {
            _O.PICKED: "finish_picking",
            _O.READY_TO_PICK: "return_to_floor",
            _O.CONFIRMED: "release_allocations",
            _O.ON_HOLD: "hold",
        },
        _O.PICKED: {_O.PACKING: "start_packing", _O.ON_HOLD: "hold"},
        _O.PACKING: {_O.PACKED: "finish_packing", _O.PICKED: "return_to_picked"},
        _O.PACKED: {_O.SHIPPED: "ship"},
        _O.SHIPPED: {_O.DELIVERED: "deliver"},
        _O.ON_HOLD: {
            _O.PENDING: "release_hold",
            _O.CONFIRMED: "release_hold",
            _O.READY_TO_PICK: "release_hold",
            _O.PICKING: "release_hold",
            _O.PICKED: "release_hold",
            _O.ALLOCATED: "allocate",
            _O.PARTIALLY_ALLOCATED: "allocate",
            _O.BACKORDERED: "backorder",
            _O.CANCELLED: "cancel",
        },
    }),
)


def legal_next_order_states(state: OrderStatus) -> frozenset[OrderStatus]:
    return ORDER_WORKFLOW.legal_next_states(state)


def can_transition_order(src: OrderStatus, dst: OrderStatus) -> bool:
    return ORDER_WORKFLOW.can_transition(src, dst)


def assert_order_transition(src: OrderStatus, dst: OrderStatus) -> None:
    ORDER_WORKFLOW.assert_transition(src, dst)


def is_order_terminal(state: OrderStatus) -> bool:
    return ORDER_WORKFLOW.is_terminal(state)


# =============================================================================
# Pick bins
# =============================================================================


class PickBinStatus(str, Enum):
    """Lifecycle of a pick bin between the picking floor and pack station."""

    STAGED = "STAGED"
    SCANNING = "SCANNING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


_B = PickBinStatus

PICK_BIN_WORKFLOW: Workflow[PickBinStatus] = Workflow(
    name="pick_bin",
    initial_state=_B.STAGED,
    states=tuple(PickBinStatus),
    transitions=_edges({
        _B.STAGED: {_B.SCANNING: "begin_scan", _B.CANCELLED: "cancel"},
        _B.SCANNING: {_B.COMPLETED: "complete", _B.CANCELLED: "cancel"},
    }),
)


def legal_next_bin_states(state: PickBinStatus) -> frozenset[PickBinStatus]:
    return PICK_BIN_WORKFLOW.legal_next_states(state)


def assert_bin_transition(src: PickBinStatus, dst: PickBinStatus) -> None:
    PICK_BIN_WORKFLOW.assert_transition(src, dst)


def is_bin_terminal(state: PickBinStatus) -> bool:
    return PICK_BIN_WORKFLOW.is_terminal(state)


# =============================================================================
# Allocations and inventory units
# =============================================================================


class AllocationStatus(str, Enum):
    """Status of a reservation of unit quantity for an order line."""

    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PARTIALLY_PICKED = "PARTIALLY_PICKED"
    PICKED = "PICKED"
    RELEASED = "RELEASED"
    CANCELLED = "CANCELLED"


_A = AllocationStatus

# Counted toward an order item's allocated quantity
COMMITTED_ALLOCATION_STATUSES = frozenset(
    {_A.ALLOCATED, _A.PARTIALLY_PICKED, _A.PICKED}
)

# Counted against a unit's quantity.  Every allocation that is not RELEASED
# or CANCELLED holds stock; a pick never lowers the unit's quantity.
RESERVING_ALLOCATION_STATUSES = frozenset(
    {_A.PENDING, _A.ALLOCATED, _A.PARTIALLY_PICKED, _A.PICKED}
)

# Reservations a release can still return to free stock
RELEASABLE_ALLOCATION_STATUSES = frozenset(
    {_A.PENDING, _A.ALLOCATED, _A.PARTIALLY_PICKED}
)

ALLOCATION_WORKFLOW: Workflow[AllocationStatus] = Workflow(
    name="allocation",
    initial_state=_A.PENDING,
    states=tuple(AllocationStatus),
    transitions=_edges({
        _A.PENDING: {
            _A.ALLOCATED: "confirm",
            _A.RELEASED: "release",
            _A.CANCELLED: "cancel",
        },
        _A.ALLOCATED: {
            _A.PARTIALLY_PICKED: "pick_partial",
            _A.PICKED: "pick",
            _A.RELEASED: "release",
            _A.CANCELLED: "cancel",
        },
        _A.PARTIALLY_PICKED: {
            _A.PICKED: "pick",
            _A.RELEASED: "release",
            _A.CANCELLED: "cancel",
        },
    }),
)


def legal_next_allocation_states(
    state: AllocationStatus,
) -> frozenset[AllocationStatus]:
    return ALLOCATION_WORKFLOW.legal_next_states(state)


def assert_allocation_transition(
    src: AllocationStatus, dst: AllocationStatus
) -> None:
    ALLOCATION_WORKFLOW.assert_transition(src, dst)


class InventoryUnitStatus(str, Enum):
    """Physical status of an inventory unit.

    Reservation is implied by allocations; there is no stored RESERVED
    quantity.  Only AVAILABLE units are allocatable.
    """

    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    PICKED = "PICKED"
    DAMAGED = "DAMAGED"
    IN_TRANSIT = "IN_TRANSIT"
