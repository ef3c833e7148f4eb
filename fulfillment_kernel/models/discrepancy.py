"""
Module: fulfillment_kernel.models.discrepancy
Responsibility: ORM persistence for inventory discrepancies -- records of
    physical counts that disagreed with the ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - variance = actual_quantity - expected_quantity.
    - At most one SHORT_PICK discrepancy per task item, so a redelivered
      short-pick job never double-counts toward cycle-count escalation.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class DiscrepancyType(str, Enum):
    SHORT_PICK = "SHORT_PICK"
    OVERAGE = "OVERAGE"
    DAMAGED = "DAMAGED"
    CYCLE_COUNT_VARIANCE = "CYCLE_COUNT_VARIANCE"


class DiscrepancyStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    RESOLVED = "RESOLVED"


class InventoryDiscrepancy(TrackedBase):
    """A reported difference between expected and counted quantity."""

    __tablename__ = "inventory_discrepancies"

    __table_args__ = (
        UniqueConstraint(
            "discrepancy_type", "task_item_id", name="uq_discrepancy_task_item"
        ),
        Index(
            "idx_discrepancy_location_type_time",
            "location_id",
            "discrepancy_type",
            "reported_at",
        ),
    )

    discrepancy_type: Mapped[DiscrepancyType] = mapped_column(String(30), nullable=False)

    product_variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False
    )

    expected_quantity: Mapped[int] = mapped_column(nullable=False)
    actual_quantity: Mapped[int] = mapped_column(nullable=False)
    variance: Mapped[int] = mapped_column(nullable=False)

    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    task_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reported_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reported_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[DiscrepancyStatus] = mapped_column(
        String(20),
        default=DiscrepancyStatus.PENDING_REVIEW,
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<InventoryDiscrepancy {self.discrepancy_type} variance={self.variance}>"
