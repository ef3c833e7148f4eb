"""
Fulfillment Kernel

The order-fulfillment allocation and task-orchestration engine of the
warehouse backend:
- FEFO/FIFO inventory allocation recomputed from the allocation ledger
- Work task state machine with idempotent, queue-safe task creation
- Pick confirmation with short-pick detection and cycle-count escalation
- Pick bin consolidation with pack-station verification
"""

__version__ = "0.1.0"
