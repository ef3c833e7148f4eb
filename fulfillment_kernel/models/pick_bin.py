"""
Module: fulfillment_kernel.models.pick_bin
Responsibility: ORM persistence for pick bins -- the physical containers that
    carry one order's picked items from the floor to the pack station.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/states.py only.

Invariants enforced:
    - One bin per (pick task, order).
    - bin_number and barcode are unique.
    - 0 <= verified_quantity <= quantity for every bin item.
    - A bin reaches COMPLETED only when every item is fully verified
      (enforced by PickBinService.complete_bin).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.states import PickBinStatus


class PickBin(TrackedBase):
    """A staged container of picked items for one order."""

    __tablename__ = "pick_bins"

    __table_args__ = (
        UniqueConstraint("bin_number", name="uq_bin_number"),
        UniqueConstraint("barcode", name="uq_bin_barcode"),
        UniqueConstraint("pick_task_id", "order_id", name="uq_bin_task_order"),
    )

    bin_number: Mapped[str] = mapped_column(String(20), nullable=False)
    barcode: Mapped[str] = mapped_column(String(40), nullable=False)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    pick_task_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("work_tasks.id"), nullable=False
    )

    status: Mapped[PickBinStatus] = mapped_column(
        String(20),
        default=PickBinStatus.STAGED,
        nullable=False,
    )

    picked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    picked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    staging_location: Mapped[str | None] = mapped_column(String(50), nullable=True)
    staged_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    packed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    packed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    items: Mapped[list["PickBinItem"]] = relationship(
        back_populates="bin",
        cascade="all, delete-orphan",
        order_by="PickBinItem.sku",
    )

    def __repr__(self) -> str:
        return f"<PickBin {self.bin_number}: {self.status}>"

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def verified_quantity(self) -> int:
        return sum(item.verified_quantity for item in self.items)

    @property
    def all_verified(self) -> bool:
        return all(item.verified_quantity == item.quantity for item in self.items)


class PickBinItem(TrackedBase):
    """One variant in a bin, with the pack-station verification count."""

    __tablename__ = "pick_bin_items"

    __table_args__ = (
        UniqueConstraint("bin_id", "product_variant_id", name="uq_bin_item_variant"),
        CheckConstraint(
            "verified_quantity >= 0 AND verified_quantity <= quantity",
            name="ck_bin_item_verified_range",
        ),
    )

    bin_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("pick_bins.id"), nullable=False
    )
    product_variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    verified_quantity: Mapped[int] = mapped_column(default=0, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    bin: Mapped[PickBin] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<PickBinItem {self.sku} {self.verified_quantity}/{self.quantity}>"

    @property
    def remaining(self) -> int:
        return self.quantity - self.verified_quantity
