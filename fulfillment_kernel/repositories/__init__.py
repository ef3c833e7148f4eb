"""Persistence ports and their SQLAlchemy implementations."""

from fulfillment_kernel.repositories.interfaces import (
    AllocationRepository,
    DiscrepancyRepository,
    InventoryRepository,
    OrderRepository,
    PickBinRepository,
    TaskItemRepository,
    WorkTaskRepository,
)
from fulfillment_kernel.repositories.sql import (
    SqlAllocationRepository,
    SqlDiscrepancyRepository,
    SqlInventoryRepository,
    SqlOrderRepository,
    SqlPickBinRepository,
    SqlTaskItemRepository,
    SqlWorkTaskRepository,
)

__all__ = [
    "AllocationRepository",
    "DiscrepancyRepository",
    "InventoryRepository",
    "OrderRepository",
    "PickBinRepository",
    "SqlAllocationRepository",
    "SqlDiscrepancyRepository",
    "SqlInventoryRepository",
    "SqlOrderRepository",
    "SqlPickBinRepository",
    "SqlTaskItemRepository",
    "SqlWorkTaskRepository",
    "TaskItemRepository",
    "WorkTaskRepository",
]
