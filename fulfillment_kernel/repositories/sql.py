"""
Module: fulfillment_kernel.repositories.sql
Responsibility: SQLAlchemy implementations of the repository interfaces over
    a caller-owned Session.
Architecture position: Kernel > Repositories.  May import from db/, models/,
    domain/ and repositories/interfaces.py.

Invariants enforced:
    - Session ownership: repositories do NOT create sessions and never
      commit.  The caller (FulfillmentEngine or a test) owns the transaction.
    - Aggregates (reserved / committed quantities) are always computed by a
      SUM over the allocation table, never read from a cached column.
    - Row locks are taken with SELECT ... FOR UPDATE.  On SQLite the whole
      write transaction is serialized by BEGIN IMMEDIATE instead.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, contains_eager

from fulfillment_kernel.domain.states import (
    BACKORDER_STATUSES,
    OPEN_TASK_ITEM_STATUSES,
    AllocationStatus,
    InventoryUnitStatus,
)
from fulfillment_kernel.models.allocation import Allocation
from fulfillment_kernel.models.discrepancy import DiscrepancyType, InventoryDiscrepancy
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.models.pick_bin import PickBin
from fulfillment_kernel.models.work_task import TaskEvent, TaskItem, WorkTask
from fulfillment_kernel.repositories.interfaces import (
    AllocationRepository,
    DiscrepancyRepository,
    InventoryRepository,
    OrderRepository,
    PickBinRepository,
    TaskItemRepository,
    WorkTaskRepository,
)


class SqlRepository:
    """Holds the caller's session.  Subclasses add queries."""

    def __init__(self, session: Session):
        self.session = session

    def flush(self) -> None:
        self.session.flush()

    def _get(self, model, obj_id: UUID, for_update: bool):
        if not for_update:
            return self.session.get(model, obj_id)
        return self.session.execute(
            select(model)
            .where(model.id == obj_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()


class SqlOrderRepository(SqlRepository, OrderRepository):
    def get(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        return self._get(Order, order_id, for_update)

    def get_by_number(self, order_number: str) -> Order | None:
        return self.session.execute(
            select(Order).where(Order.order_number == order_number)
        ).scalar_one_or_none()

    def find_missing(self, order_ids: Iterable[UUID]) -> list[UUID]:
        wanted = list(dict.fromkeys(order_ids))
        if not wanted:
            return []
        found = set(
            self.session.execute(
                select(Order.id).where(Order.id.in_(wanted))
            ).scalars()
        )
        return [oid for oid in wanted if oid not in found]

    def list_backordered_for_variant(self, variant_id: UUID) -> list[Order]:
        wanting = (
            select(OrderItem.order_id)
            .where(OrderItem.product_variant_id == variant_id)
            .where(OrderItem.quantity_allocated < OrderItem.quantity)
        )
        return list(
            self.session.execute(
                select(Order)
                .where(Order.status.in_(list(BACKORDER_STATUSES)))
                .where(Order.id.in_(wanting))
                .order_by(Order.created_at, Order.order_number)
            ).scalars()
        )

    def add(self, order: Order) -> None:
        self.session.add(order)


class SqlInventoryRepository(SqlRepository, InventoryRepository):
    def get_unit(
        self, unit_id: UUID, *, for_update: bool = False
    ) -> InventoryUnit | None:
        return self._get(InventoryUnit, unit_id, for_update)

    def list_allocatable_units(self, variant_id: UUID) -> list[InventoryUnit]:
        stmt = (
            select(InventoryUnit)
            .join(InventoryUnit.location)
            .options(contains_eager(InventoryUnit.location))
            .where(InventoryUnit.product_variant_id == variant_id)
            .where(InventoryUnit.status == InventoryUnitStatus.AVAILABLE)
            .order_by(
                InventoryUnit.expiry_date.asc().nulls_last(),
                InventoryUnit.received_at.asc(),
                InventoryUnit.id.asc(),
            )
            .with_for_update(of=InventoryUnit)
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars().unique())

    def get_location(
        self, location_id: UUID, *, for_update: bool = False
    ) -> Location | None:
        return self._get(Location, location_id, for_update)

    def get_variant(self, variant_id: UUID) -> ProductVariant | None:
        return self.session.get(ProductVariant, variant_id)

    def find_variant_by_sku(self, sku: str) -> ProductVariant | None:
        return self.session.execute(
            select(ProductVariant).where(ProductVariant.sku == sku)
        ).scalar_one_or_none()

    def add(self, obj: InventoryUnit | Location | ProductVariant) -> None:
        self.session.add(obj)


class SqlAllocationRepository(SqlRepository, AllocationRepository):
    def add(self, allocation: Allocation) -> None:
        self.session.add(allocation)

    def get(self, allocation_id: UUID) -> Allocation | None:
        return self.session.get(Allocation, allocation_id)

    def list_for_order(
        self, order_id: UUID, statuses: Collection[AllocationStatus]
    ) -> list[Allocation]:
        return list(
            self.session.execute(
                select(Allocation)
                .where(Allocation.order_id == order_id)
                .where(Allocation.status.in_(list(statuses)))
                .order_by(Allocation.allocated_at, Allocation.id)
            ).scalars()
        )

    def list_for_order_item(
        self, order_item_id: UUID, statuses: Collection[AllocationStatus]
    ) -> list[Allocation]:
        return list(
            self.session.execute(
                select(Allocation)
                .where(Allocation.order_item_id == order_item_id)
                .where(Allocation.status.in_(list(statuses)))
                .order_by(Allocation.allocated_at, Allocation.id)
            ).scalars()
        )

    def sum_for_order_item(
        self, order_item_id: UUID, statuses: Collection[AllocationStatus]
    ) -> int:
        return self.session.execute(
            select(func.coalesce(func.sum(Allocation.quantity), 0))
            .where(Allocation.order_item_id == order_item_id)
            .where(Allocation.status.in_(list(statuses)))
        ).scalar_one()

    def sum_for_unit(
        self, unit_id: UUID, statuses: Collection[AllocationStatus]
    ) -> int:
        return self.session.execute(
            select(func.coalesce(func.sum(Allocation.quantity), 0))
            .where(Allocation.inventory_unit_id == unit_id)
            .where(Allocation.status.in_(list(statuses)))
        ).scalar_one()

    def list_unlinked_for_orders(self, order_ids: Sequence[UUID]) -> list[Allocation]:
        if not order_ids:
            return []
        return list(
            self.session.execute(
                select(Allocation)
                .where(Allocation.order_id.in_(list(order_ids)))
                .where(Allocation.status == AllocationStatus.ALLOCATED)
                .where(Allocation.task_item_id.is_(None))
                .order_by(Allocation.allocated_at, Allocation.id)
            ).scalars()
        )


class SqlWorkTaskRepository(SqlRepository, WorkTaskRepository):
    def get(self, task_id: UUID, *, for_update: bool = False) -> WorkTask | None:
        return self._get(WorkTask, task_id, for_update)

    def get_by_idempotency_key(self, key: str) -> WorkTask | None:
        return self.session.execute(
            select(WorkTask).where(WorkTask.idempotency_key == key)
        ).scalar_one_or_none()

    def list_by_status(self, statuses: Collection[str]) -> list[WorkTask]:
        return list(
            self.session.execute(
                select(WorkTask)
                .where(WorkTask.status.in_(list(statuses)))
                .order_by(WorkTask.priority, WorkTask.created_at, WorkTask.task_number)
            ).scalars()
        )

    def add(self, task: WorkTask) -> None:
        self.session.add(task)

    def add_event(self, event: TaskEvent) -> None:
        self.session.add(event)

    def list_events(self, task_id: UUID) -> list[TaskEvent]:
        return list(
            self.session.execute(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(TaskEvent.occurred_at, TaskEvent.created_at)
            ).scalars()
        )


class SqlTaskItemRepository(SqlRepository, TaskItemRepository):
    def get(self, item_id: UUID, *, for_update: bool = False) -> TaskItem | None:
        return self._get(TaskItem, item_id, for_update)

    def list_for_task(self, task_id: UUID) -> list[TaskItem]:
        return list(
            self.session.execute(
                select(TaskItem)
                .where(TaskItem.task_id == task_id)
                .order_by(TaskItem.sequence)
            ).scalars()
        )

    def count_open(self, task_id: UUID) -> int:
        return self.session.execute(
            select(func.count(TaskItem.id))
            .where(TaskItem.task_id == task_id)
            .where(TaskItem.status.in_(list(OPEN_TASK_ITEM_STATUSES)))
        ).scalar_one()

    def next_open(self, task_id: UUID) -> TaskItem | None:
        return self.session.execute(
            select(TaskItem)
            .where(TaskItem.task_id == task_id)
            .where(TaskItem.status.in_(list(OPEN_TASK_ITEM_STATUSES)))
            .order_by(TaskItem.sequence)
            .limit(1)
        ).scalar_one_or_none()


class SqlPickBinRepository(SqlRepository, PickBinRepository):
    def get(self, bin_id: UUID, *, for_update: bool = False) -> PickBin | None:
        return self._get(PickBin, bin_id, for_update)

    def get_by_barcode(self, barcode: str) -> PickBin | None:
        return self.session.execute(
            select(PickBin).where(PickBin.barcode == barcode)
        ).scalar_one_or_none()

    def get_for_task_order(self, task_id: UUID, order_id: UUID) -> PickBin | None:
        return self.session.execute(
            select(PickBin)
            .where(PickBin.pick_task_id == task_id)
            .where(PickBin.order_id == order_id)
        ).scalar_one_or_none()

    def add(self, pick_bin: PickBin) -> None:
        self.session.add(pick_bin)


class SqlDiscrepancyRepository(SqlRepository, DiscrepancyRepository):
    def add(self, discrepancy: InventoryDiscrepancy) -> None:
        self.session.add(discrepancy)

    def get_for_task_item(self, task_item_id: UUID) -> InventoryDiscrepancy | None:
        return self.session.execute(
            select(InventoryDiscrepancy)
            .where(InventoryDiscrepancy.task_item_id == task_item_id)
            .where(InventoryDiscrepancy.discrepancy_type == DiscrepancyType.SHORT_PICK)
        ).scalar_one_or_none()

    def count_short_picks_since(self, location_id: UUID, since: datetime) -> int:
        return self.session.execute(
            select(func.count(InventoryDiscrepancy.id))
            .where(InventoryDiscrepancy.location_id == location_id)
            .where(InventoryDiscrepancy.discrepancy_type == DiscrepancyType.SHORT_PICK)
            .where(InventoryDiscrepancy.reported_at >= since)
        ).scalar_one()
