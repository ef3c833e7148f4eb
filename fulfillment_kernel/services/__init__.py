"""
Kernel services.

Services flush but never commit; ``FulfillmentEngine.run`` owns the
transaction and the post-commit event publication.
"""

from fulfillment_kernel.services.allocation_service import AllocationService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_status import OrderStatusProjection
from fulfillment_kernel.services.pick_bin_service import PickBinService
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.services.short_pick_service import ShortPickService
from fulfillment_kernel.services.unit_of_work import FulfillmentEngine, UnitOfWork
from fulfillment_kernel.services.work_task_service import WorkTaskService

__all__ = [
    "AllocationService",
    "FulfillmentEngine",
    "InventoryLedger",
    "OrderStatusProjection",
    "PickBinService",
    "SequenceService",
    "ShortPickService",
    "UnitOfWork",
    "WorkTaskService",
]
