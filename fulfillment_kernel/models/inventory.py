"""
Module: fulfillment_kernel.models.inventory
Responsibility: ORM persistence for the catalog variants, storage locations
    and physical inventory units that make up the inventory ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/states.py only.

Invariants enforced:
    - InventoryUnit.quantity >= 0 (check constraint).
    - Reserved quantity is never stored: it is always the sum of the unit's
      reserving allocations, recomputed on read.
    - Only the InventoryLedger service mutates quantity or status.

Failure modes:
    - IntegrityError on duplicate SKU or location name, or negative quantity.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.states import InventoryUnitStatus


class ProductVariant(TrackedBase):
    """A sellable SKU with its scannable identifiers."""

    __tablename__ = "product_variants"

    __table_args__ = (UniqueConstraint("sku", name="uq_variant_sku"),)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    upc: Mapped[str | None] = mapped_column(String(50), nullable=True)
    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku}>"

    def matches_barcode(self, scanned: str) -> bool:
        """Case-insensitive match against UPC, barcode or SKU."""
        needle = scanned.strip().lower()
        return any(
            code is not None and code.lower() == needle
            for code in (self.upc, self.barcode, self.sku)
        )


class Location(TrackedBase):
    """
    A storage location in the warehouse.

    Contract:
        Units at a location with ``is_pickable = False`` (bulk reserve,
        quarantine, dock) are never allocated.  The cycle-count fields are
        written by the short-pick escalation policy.
    """

    __tablename__ = "locations"

    __table_args__ = (
        UniqueConstraint("name", name="uq_location_name"),
        Index("idx_location_zone_seq", "zone", "pick_sequence"),
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)
    zone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pick_sequence: Mapped[int | None] = mapped_column(nullable=True)

    is_pickable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    needs_cycle_count: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    cycle_count_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cycle_count_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cycle_count_flagged_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Location {self.name}>"

    def matches_barcode(self, scanned: str) -> bool:
        """Case-insensitive match against the location barcode or name."""
        needle = scanned.strip().lower()
        return any(
            code is not None and code.lower() == needle
            for code in (self.barcode, self.name)
        )


class InventoryUnit(TrackedBase):
    """
    A quantity of one variant at one location.

    Contract:
        Allocations reserve against a unit without changing it, and picks
        leave ``quantity`` untouched.  Status flips to PICKED once the
        unit's PICKED allocations cover its quantity.
    """

    __tablename__ = "inventory_units"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_unit_quantity_non_negative"),
        Index(
            "idx_unit_allocatable",
            "product_variant_id",
            "status",
            "expiry_date",
            "received_at",
        ),
        Index("idx_unit_location", "location_id"),
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

    quantity: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[InventoryUnitStatus] = mapped_column(
        String(20),
        default=InventoryUnitStatus.AVAILABLE,
        nullable=False,
    )

    lot_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    variant: Mapped[ProductVariant] = relationship()
    location: Mapped[Location] = relationship()

    def __repr__(self) -> str:
        return f"<InventoryUnit {self.id} qty={self.quantity} {self.status}>"
