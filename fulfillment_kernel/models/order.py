"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for customer orders and their lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/states.py only.

Invariants enforced:
    - status is always an OrderStatus reachable in ORDER_WORKFLOW; services
      change it only through OrderStatusProjection.transition().
    - hold_reason / hold_at are set only while status is ON_HOLD.
    - OrderItem.quantity_allocated <= quantity, written only from a
      recomputation over the allocation ledger.

Failure modes:
    - IntegrityError on duplicate order_number.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.states import OrderStatus


class OrderPriority(str, Enum):
    """Service tier of an order."""

    STANDARD = "STANDARD"
    EXPEDITED = "EXPEDITED"
    RUSH = "RUSH"


class Order(TrackedBase):
    """
    A customer order.

    Contract:
        Owns its OrderItems (cascade delete).  The externally visible status
        is derived from allocation and task progress by the order status
        projection.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        Index("idx_order_status_created", "status", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(30),
        default=OrderStatus.PENDING,
        nullable=False,
    )

    priority: Mapped[OrderPriority] = mapped_column(
        String(20),
        default=OrderPriority.STANDARD,
        nullable=False,
    )

    hold_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hold_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.line_number",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number}: {OrderStatus(self.status).value}>"

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(TrackedBase):
    """
    One order line.

    Contract:
        ``product_variant_id`` is NULL until the ordered SKU is matched to a
        catalog variant; unmatched lines are never allocated.
    """

    __tablename__ = "order_items"

    __table_args__ = (
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_variant", "product_variant_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(default=1, nullable=False)

    # SKU as ordered; may not resolve to a variant
    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    product_variant_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("product_variants.id"),
        nullable=True,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)
    quantity_allocated: Mapped[int] = mapped_column(default=0, nullable=False)
    quantity_picked: Mapped[int] = mapped_column(default=0, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.sku} x{self.quantity}>"

    @property
    def matched(self) -> bool:
        """True once the line references a catalog variant."""
        return self.product_variant_id is not None
