"""ORM models for the fulfillment kernel."""

from fulfillment_kernel.models.allocation import Allocation
from fulfillment_kernel.models.discrepancy import (
    DiscrepancyStatus,
    DiscrepancyType,
    InventoryDiscrepancy,
)
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.models.order import Order, OrderItem, OrderPriority
from fulfillment_kernel.models.pick_bin import PickBin, PickBinItem
from fulfillment_kernel.models.work_task import TaskEvent, TaskItem, TaskType, WorkTask

__all__ = [
    "Allocation",
    "DiscrepancyStatus",
    "DiscrepancyType",
    "InventoryDiscrepancy",
    "InventoryUnit",
    "Location",
    "Order",
    "OrderItem",
    "OrderPriority",
    "PickBin",
    "PickBinItem",
    "ProductVariant",
    "TaskEvent",
    "TaskItem",
    "TaskType",
    "WorkTask",
]
