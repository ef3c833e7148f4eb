"""
Module: fulfillment_kernel.repositories.interfaces
Responsibility: Narrow, typed persistence ports used by the fulfillment
    services.  Services depend on these interfaces only; the SQLAlchemy
    implementations live in repositories/sql.py and tests may substitute
    in-memory doubles.
Architecture position: Kernel > Repositories.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Repositories never commit.  ``flush()`` pushes pending changes inside
      the caller's transaction.
    - ``for_update=True`` takes a row lock that is held until the caller's
      transaction ends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Iterable, Sequence
from datetime import datetime
from uuid import UUID

from fulfillment_kernel.domain.states import AllocationStatus
from fulfillment_kernel.models.allocation import Allocation
from fulfillment_kernel.models.discrepancy import InventoryDiscrepancy
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.models.pick_bin import PickBin
from fulfillment_kernel.models.work_task import TaskEvent, TaskItem, WorkTask


class OrderRepository(ABC):
    @abstractmethod
    def get(self, order_id: UUID, *, for_update: bool = False) -> Order | None: ...

    @abstractmethod
    def get_by_number(self, order_number: str) -> Order | None: ...

    @abstractmethod
    def find_missing(self, order_ids: Iterable[UUID]) -> list[UUID]:
        """Ids from *order_ids* with no matching order, in input order."""

    @abstractmethod
    def list_backordered_for_variant(self, variant_id: UUID) -> list[Order]:
        """BACKORDERED / PARTIALLY_ALLOCATED orders wanting *variant_id*, oldest first."""

    @abstractmethod
    def add(self, order: Order) -> None: ...

    @abstractmethod
    def flush(self) -> None: ...


class InventoryRepository(ABC):
    @abstractmethod
    def get_unit(
        self, unit_id: UUID, *, for_update: bool = False
    ) -> InventoryUnit | None: ...

    @abstractmethod
    def list_allocatable_units(self, variant_id: UUID) -> list[InventoryUnit]:
        """
        AVAILABLE units of *variant_id*, row-locked, in FEFO then FIFO order
        (earliest expiry first, undated last, then oldest receipt, then id).
        """

    @abstractmethod
    def get_location(
        self, location_id: UUID, *, for_update: bool = False
    ) -> Location | None: ...

    @abstractmethod
    def get_variant(self, variant_id: UUID) -> ProductVariant | None: ...

    @abstractmethod
    def find_variant_by_sku(self, sku: str) -> ProductVariant | None: ...

    @abstractmethod
    def add(self, obj: InventoryUnit | Location | ProductVariant) -> None: ...

    @abstractmethod
    def flush(self) -> None: ...


class AllocationRepository(ABC):
    @abstractmethod
    def add(self, allocation: Allocation) -> None: ...

    @abstractmethod
    def get(self, allocation_id: UUID) -> Allocation | None: ...

    @abstractmethod
    def list_for_order(
        self, order_id: UUID, statuses: Collection[AllocationStatus]
    ) -> list[Allocation]: ...

    @abstractmethod
    def list_for_order_item(
        self, order_item_id: UUID, statuses: Collection[AllocationStatus]
    ) -> list[Allocation]: ...

    @abstractmethod
    def sum_for_order_item(
        self, order_item_id: UUID, statuses: Collection[AllocationStatus]
    ) -> int: ...

    @abstractmethod
    def sum_for_unit(
        self, unit_id: UUID, statuses: Collection[AllocationStatus]
    ) -> int: ...

    @abstractmethod
    def list_unlinked_for_orders(self, order_ids: Sequence[UUID]) -> list[Allocation]:
        """ALLOCATED rows of the given orders not yet linked to a task item."""

    @abstractmethod
    def flush(self) -> None: ...


class WorkTaskRepository(ABC):
    @abstractmethod
    def get(self, task_id: UUID, *, for_update: bool = False) -> WorkTask | None: ...

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> WorkTask | None: ...

    @abstractmethod
    def list_by_status(self, statuses: Collection[str]) -> list[WorkTask]: ...

    @abstractmethod
    def add(self, task: WorkTask) -> None: ...

    @abstractmethod
    def add_event(self, event: TaskEvent) -> None: ...

    @abstractmethod
    def list_events(self, task_id: UUID) -> list[TaskEvent]: ...

    @abstractmethod
    def flush(self) -> None: ...


class TaskItemRepository(ABC):
    @abstractmethod
    def get(self, item_id: UUID, *, for_update: bool = False) -> TaskItem | None: ...

    @abstractmethod
    def list_for_task(self, task_id: UUID) -> list[TaskItem]: ...

    @abstractmethod
    def count_open(self, task_id: UUID) -> int: ...

    @abstractmethod
    def next_open(self, task_id: UUID) -> TaskItem | None:
        """First PENDING / IN_PROGRESS item by sequence."""

    @abstractmethod
    def flush(self) -> None: ...


class PickBinRepository(ABC):
    @abstractmethod
    def get(self, bin_id: UUID, *, for_update: bool = False) -> PickBin | None: ...

    @abstractmethod
    def get_by_barcode(self, barcode: str) -> PickBin | None: ...

    @abstractmethod
    def get_for_task_order(self, task_id: UUID, order_id: UUID) -> PickBin | None: ...

    @abstractmethod
    def add(self, pick_bin: PickBin) -> None: ...

    @abstractmethod
    def flush(self) -> None: ...


class DiscrepancyRepository(ABC):
    @abstractmethod
    def add(self, discrepancy: InventoryDiscrepancy) -> None: ...

    @abstractmethod
    def get_for_task_item(self, task_item_id: UUID) -> InventoryDiscrepancy | None:
        """The SHORT_PICK discrepancy recorded for a task item, if any."""

    @abstractmethod
    def count_short_picks_since(self, location_id: UUID, since: datetime) -> int: ...

    @abstractmethod
    def flush(self) -> None: ...
