"""
Module: fulfillment_kernel.models.work_task
Responsibility: ORM persistence for work tasks, their task items and the
    per-task audit trail of lifecycle events.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/states.py only.

Invariants enforced:
    - idempotency_key is unique: one task per caller-supplied key.
    - task_number is unique.
    - status moves only along WORK_TASK_WORKFLOW (enforced by WorkTaskService).
    - block_reason / blocked_at are set only while status is BLOCKED.
    - Progress counters only ever increase.

Failure modes:
    - IntegrityError on a concurrent insert with the same idempotency key
      (mapped to TransactionAbortError by the service).

Audit relevance:
    Every lifecycle step writes a TaskEvent row with the acting user, so
    labor history survives even after the published event is gone.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.states import TaskItemStatus, WorkTaskStatus


class TaskType(str, Enum):
    """Kind of labor a task groups."""

    PICKING = "PICKING"
    PACKING = "PACKING"
    SHIPPING = "SHIPPING"
    RECEIVING = "RECEIVING"
    PUTAWAY = "PUTAWAY"
    CYCLE_COUNT = "CYCLE_COUNT"
    REPLENISHMENT = "REPLENISHMENT"
    QC = "QC"

    @property
    def number_prefix(self) -> str:
        """Three-letter prefix used in task numbers (PICKING -> PIC)."""
        return self.value[:3]


class WorkTask(TrackedBase):
    """
    A unit of labor over one or more orders.

    Contract:
        Owns its TaskItems and TaskEvents (cascade).  Counters are
        maintained by WorkTaskService as items resolve.
    """

    __tablename__ = "work_tasks"

    __table_args__ = (
        UniqueConstraint("task_number", name="uq_task_number"),
        UniqueConstraint("idempotency_key", name="uq_task_idempotency_key"),
        Index("idx_task_status_priority", "status", "priority"),
        Index("idx_task_assignee", "assigned_to"),
    )

    task_number: Mapped[str] = mapped_column(String(30), nullable=False)

    task_type: Mapped[TaskType] = mapped_column(String(20), nullable=False)

    status: Mapped[WorkTaskStatus] = mapped_column(
        String(20),
        default=WorkTaskStatus.PENDING,
        nullable=False,
    )

    priority: Mapped[int] = mapped_column(default=5, nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    block_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    block_notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    order_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    total_orders: Mapped[int] = mapped_column(default=0, nullable=False)
    completed_orders: Mapped[int] = mapped_column(default=0, nullable=False)
    total_items: Mapped[int] = mapped_column(default=0, nullable=False)
    completed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    short_items: Mapped[int] = mapped_column(default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(default=0, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["TaskItem"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskItem.sequence",
    )

    def __repr__(self) -> str:
        return f"<WorkTask {self.task_number}: {self.status}>"

    @property
    def order_uuids(self) -> list[UUID]:
        return [UUID(o) for o in self.order_ids]


class TaskItem(TrackedBase):
    """
    One line of work within a task.

    Contract:
        ``sequence`` is the authoritative pick order.  ``allocation_id``
        links back to the reservation this item was generated from.
    """

    __tablename__ = "task_items"

    __table_args__ = (
        UniqueConstraint("task_id", "sequence", name="uq_task_item_sequence"),
        Index("idx_task_item_task_status", "task_id", "status"),
    )

    task_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("work_tasks.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    order_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("order_items.id"), nullable=True
    )
    product_variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False
    )
    allocation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("allocations.id"), nullable=True
    )

    quantity_required: Mapped[int] = mapped_column(nullable=False)
    quantity_completed: Mapped[int] = mapped_column(default=0, nullable=False)

    status: Mapped[TaskItemStatus] = mapped_column(
        String(20),
        default=TaskItemStatus.PENDING,
        nullable=False,
    )

    location_scanned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    item_scanned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    completed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    short_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    task: Mapped[WorkTask] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<TaskItem #{self.sequence} {self.quantity_completed}/{self.quantity_required}: {self.status}>"


class TaskEvent(TrackedBase):
    """Audit row for one task lifecycle step."""

    __tablename__ = "task_events"

    __table_args__ = (Index("idx_task_event_task", "task_id", "occurred_at"),)

    task_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("work_tasks.id"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    task_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<TaskEvent {self.event_type} task={self.task_id}>"
