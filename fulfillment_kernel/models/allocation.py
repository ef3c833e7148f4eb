"""
Module: fulfillment_kernel.models.allocation
Responsibility: ORM persistence for allocations -- reservations of inventory
    unit quantity for a specific order line.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/states.py only.

Invariants enforced:
    - Created only by the allocation engine, status ALLOCATED.
    - For every unit, the sum of reserving allocation quantities (PICKED
      included) never exceeds the unit's quantity.  Enforced by the engine
      under a row lock, re-summed inside the writing transaction.
    - task_item_id is a weak reference: task items point back at their
      allocation, so no foreign key cycle is declared.

Audit relevance:
    Allocations are never deleted.  Release and pick stamp released_at /
    picked_at so the reservation history of a unit can be reconstructed.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.states import AllocationStatus


class Allocation(TrackedBase):
    """Reservation linking one unit, one order line and a quantity."""

    __tablename__ = "allocations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_allocation_quantity_positive"),
        Index("idx_allocation_unit_status", "inventory_unit_id", "status"),
        Index("idx_allocation_order_status", "order_id", "status"),
        Index("idx_allocation_item_status", "order_item_id", "status"),
    )

    inventory_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_units.id"),
        nullable=False,
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    order_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("order_items.id"),
        nullable=True,
    )

    product_variant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_variants.id"),
        nullable=False,
    )

    location_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id"),
        nullable=False,
    )

    task_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    quantity: Mapped[int] = mapped_column(nullable=False)
    picked_quantity: Mapped[int] = mapped_column(default=0, nullable=False)
    lot_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[AllocationStatus] = mapped_column(
        String(20),
        default=AllocationStatus.ALLOCATED,
        nullable=False,
    )

    allocated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    picked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Allocation {self.quantity} of unit {self.inventory_unit_id}: {self.status}>"
