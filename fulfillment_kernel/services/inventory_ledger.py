"""
InventoryLedger -- the single writer of inventory unit quantity and status.

Responsibility:
    Answers "how much of this unit is still free?" by recomputing from the
    allocation ledger, and applies the physical movements that change a
    unit: receipt, pick confirmation and status moves (damage, transit).

Architecture position:
    Kernel > Services -- leaf service.  Used by AllocationService and
    WorkTaskService; depends only on repositories.

Invariants enforced:
    - Free quantity is never stored: ``unit.quantity`` minus the SUM of the
      unit's reserving allocations (PICKED included), recomputed on every
      call.
    - Picks never change ``unit.quantity``.
    - A unit whose PICKED allocations cover its quantity is marked PICKED.

Failure modes:
    - InsufficientUnitQuantityError when a pick exceeds on-hand quantity.
    - InvalidQuantityError on a negative pick or non-positive receipt.
"""

from datetime import date, datetime

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.states import (
    RESERVING_ALLOCATION_STATUSES,
    AllocationStatus,
    InventoryUnitStatus,
)
from fulfillment_kernel.exceptions import (
    InsufficientUnitQuantityError,
    InvalidQuantityError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.repositories.interfaces import (
    AllocationRepository,
    InventoryRepository,
)

logger = get_logger("services.inventory_ledger")


class InventoryLedger:
    """
    Physical inventory movements and free-quantity computation.

    Contract:
        Callers lock the unit (``get_unit(..., for_update=True)`` or
        ``list_allocatable_units``) before acting on ``free_quantity``.

    Non-goals:
        - Does NOT create allocations (AllocationService).
        - Does NOT commit.
    """

    def __init__(
        self,
        inventory: InventoryRepository,
        allocations: AllocationRepository,
        clock: Clock,
    ):
        self._inventory = inventory
        self._allocations = allocations
        self._clock = clock

    def reserved_quantity(self, unit: InventoryUnit) -> int:
        return self._allocations.sum_for_unit(unit.id, RESERVING_ALLOCATION_STATUSES)

    def free_quantity(self, unit: InventoryUnit) -> int:
        """On-hand quantity not yet reserved by an active allocation."""
        return max(0, unit.quantity - self.reserved_quantity(unit))

    def record_pick(self, unit: InventoryUnit, quantity: int) -> InventoryUnit:
        """
        Apply a confirmed pick of *quantity* from *unit*.

        The picked allocation keeps holding its full quantity, so
        ``unit.quantity`` is left as is; a short pick cannot return the
        missing units to free stock.  Callers flush the allocation's PICKED
        status first.

        Postconditions: status PICKED once the unit's PICKED allocations
            cover its quantity.
        """
        if quantity < 0:
            raise InvalidQuantityError(quantity, "pick quantity cannot be negative")
        if quantity > unit.quantity:
            raise InsufficientUnitQuantityError(unit.id, quantity, unit.quantity)

        picked = self._allocations.sum_for_unit(unit.id, {AllocationStatus.PICKED})
        if picked >= unit.quantity:
            unit.status = InventoryUnitStatus.PICKED
            self._inventory.flush()

        logger.debug(
            "inventory_picked",
            extra={
                "unit_id": str(unit.id),
                "quantity": quantity,
                "picked_total": picked,
                "unit_quantity": unit.quantity,
            },
        )
        return unit

    def transition_status(
        self, unit: InventoryUnit, status: InventoryUnitStatus
    ) -> InventoryUnit:
        """Move a unit to DAMAGED, IN_TRANSIT, etc.  Only AVAILABLE units allocate."""
        previous = InventoryUnitStatus(unit.status)
        unit.status = status
        self._inventory.flush()
        logger.info(
            "inventory_unit_status_changed",
            extra={
                "unit_id": str(unit.id),
                "from_status": previous.value,
                "to_status": status.value,
            },
        )
        return unit

    def receive(
        self,
        variant: ProductVariant,
        location: Location,
        quantity: int,
        *,
        lot_number: str | None = None,
        expiry_date: date | None = None,
        received_at: datetime | None = None,
    ) -> InventoryUnit:
        """Create an AVAILABLE unit of *variant* at *location*."""
        if quantity <= 0:
            raise InvalidQuantityError(quantity, "received quantity must be positive")

        unit = InventoryUnit(
            product_variant_id=variant.id,
            location_id=location.id,
            quantity=quantity,
            status=InventoryUnitStatus.AVAILABLE,
            lot_number=lot_number,
            expiry_date=expiry_date,
            received_at=received_at or self._clock.now(),
        )
        self._inventory.add(unit)
        self._inventory.flush()

        logger.info(
            "inventory_received",
            extra={
                "unit_id": str(unit.id),
                "sku": variant.sku,
                "location": location.name,
                "quantity": quantity,
            },
        )
        return unit
