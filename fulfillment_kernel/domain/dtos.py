"""
Result DTOs returned by the fulfillment services.

All are frozen dataclasses: callers (request handlers, queue workers) get
immutable snapshots, never live ORM rows they could mutate outside the
transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID

from fulfillment_kernel.domain.states import OrderStatus, PickBinStatus, WorkTaskStatus


# =============================================================================
# Allocation
# =============================================================================


class ItemAllocationStatus(str, Enum):
    """Per-line outcome of an allocation pass."""

    FULL = "FULL"
    PARTIAL = "PARTIAL"
    NONE = "NONE"
    UNMATCHED = "UNMATCHED"


@dataclass(frozen=True)
class AllocationLine:
    """One allocation row created during an allocation pass."""

    allocation_id: UUID
    order_item_id: UUID
    inventory_unit_id: UUID
    location_id: UUID
    product_variant_id: UUID
    quantity: int
    lot_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class ItemAllocationOutcome:
    """How one order line fared."""

    order_item_id: UUID
    sku: str | None
    status: ItemAllocationStatus
    quantity: int
    allocated: int
    backordered: int


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of ``AllocationService.allocate_order``."""

    order_id: UUID
    order_number: str
    status: OrderStatus
    total_items: int
    allocated_items: int
    backordered_items: int
    unmatched_items: int
    items: tuple[ItemAllocationOutcome, ...] = ()
    allocations: tuple[AllocationLine, ...] = ()

    @property
    def newly_allocated_quantity(self) -> int:
        return sum(a.quantity for a in self.allocations)


@dataclass(frozen=True)
class BatchAllocationError:
    """A per-order failure captured by a batch allocation."""

    order_id: UUID
    code: str
    error: str


@dataclass(frozen=True)
class BatchAllocationResult:
    """Outcome of ``AllocationService.allocate_orders``."""

    fully_allocated: tuple[UUID, ...] = ()
    partially_allocated: tuple[UUID, ...] = ()
    backordered: tuple[UUID, ...] = ()
    on_hold: tuple[UUID, ...] = ()
    errors: tuple[BatchAllocationError, ...] = ()
    results: tuple[AllocationResult, ...] = ()


# =============================================================================
# Work tasks
# =============================================================================


@dataclass(frozen=True)
class ItemCompletionOutcome:
    """Tells the caller whether to keep driving the task."""

    complete: bool
    short: bool
    task_complete: bool
    task_item_id: UUID | None = None
    quantity_completed: int = 0
    shortage: int = 0


@dataclass(frozen=True)
class TaskProgress:
    """Counter snapshot of a work task."""

    task_id: UUID
    task_number: str
    status: WorkTaskStatus
    total_items: int
    completed_items: int
    short_items: int
    skipped_items: int
    open_items: int
    total_orders: int
    completed_orders: int

    @property
    def percent_complete(self) -> int:
        if self.total_items == 0:
            return 100
        done = self.total_items - self.open_items
        return (done * 100) // self.total_items


@dataclass(frozen=True)
class ScanResult:
    """Outcome of an operator barcode scan against a task item."""

    task_item_id: UUID
    matched: bool
    expected: str
    scanned: str


# =============================================================================
# Short picks
# =============================================================================


@dataclass(frozen=True)
class ShortPickOutcome:
    """Outcome of ``ShortPickService.handle_short_pick``."""

    discrepancy_created: bool
    cycle_count_flagged: bool
    shortage: int
    discrepancy_id: UUID | None = None
    recent_short_picks: int = 0


# =============================================================================
# Pick bins
# =============================================================================


@dataclass(frozen=True)
class BinItemView:
    sku: str
    quantity: int
    verified_quantity: int
    product_variant_id: UUID

    @property
    def is_verified(self) -> bool:
        return self.verified_quantity >= self.quantity


@dataclass(frozen=True)
class BinLookup:
    """What the pack station sees after scanning a bin barcode."""

    bin_id: UUID
    bin_number: str
    barcode: str
    status: PickBinStatus
    order_id: UUID
    order_number: str
    items: tuple[BinItemView, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BinVerificationResult:
    """Outcome of scanning one item at the pack station."""

    verified: bool
    sku: str
    verified_quantity: int
    quantity: int
    all_verified: bool
    progress: str
