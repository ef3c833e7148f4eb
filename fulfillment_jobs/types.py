"""
fulfillment_jobs.types -- Pure frozen dataclasses for queue jobs.

ZERO I/O.  Two tagged unions, one per queue:

    WorkTaskJob = CreatePickingTask | AssignTask | StartTask
                  | CompleteTask | CancelTask
    PickBinJob  = PrintBinLabel | NotifyPackStation | HandleShortPick
                  | RecordPickMetrics

The class itself is the tag; JobDispatcher matches on it exhaustively.

Invariants enforced:
    - Jobs are immutable and carry a ``job_id`` for log correlation.
    - CreatePickingTask carries the idempotency key, so redelivery of the
      same job never creates a second task.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeAlias
from uuid import UUID, uuid4


# =============================================================================
# Work task queue
# =============================================================================


@dataclass(frozen=True)
class CreatePickingTask:
    order_ids: tuple[UUID, ...]
    idempotency_key: str
    priority: int = 5
    notes: str | None = None
    created_by: str | None = None
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class AssignTask:
    task_id: UUID
    user_id: str
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class StartTask:
    task_id: UUID
    user_id: str
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class CompleteTask:
    task_id: UUID
    user_id: str
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class CancelTask:
    task_id: UUID
    reason: str
    user_id: str | None = None
    job_id: UUID = field(default_factory=uuid4)


WorkTaskJob: TypeAlias = CreatePickingTask | AssignTask | StartTask | CompleteTask | CancelTask


# =============================================================================
# Pick bin queue
# =============================================================================


@dataclass(frozen=True)
class PrintBinLabel:
    """Label data is carried in the job; printing needs no database access."""

    bin_id: UUID
    bin_number: str
    barcode: str
    order_number: str
    item_count: int
    total_quantity: int
    printer_id: str | None = None
    copies: int = 1
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class NotifyPackStation:
    bin_id: UUID
    bin_number: str
    order_id: UUID
    order_number: str
    priority: str
    item_count: int
    total_quantity: int
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class HandleShortPick:
    task_item_id: UUID
    reported_by: str | None = None
    job_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class RecordPickMetrics:
    task_id: UUID
    task_number: str
    item_count: int
    short_count: int
    started_at: datetime
    completed_at: datetime
    user_id: str | None = None
    job_id: UUID = field(default_factory=uuid4)


PickBinJob: TypeAlias = PrintBinLabel | NotifyPackStation | HandleShortPick | RecordPickMetrics

Job: TypeAlias = WorkTaskJob | PickBinJob


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class PickMetrics:
    """Picker throughput for one completed task."""

    task_id: UUID
    task_number: str
    user_id: str | None
    item_count: int
    short_count: int
    duration_seconds: int
    items_per_minute: float


@dataclass(frozen=True)
class LabelPrintResult:
    bin_id: UUID
    printed: bool
    zpl: str


@dataclass(frozen=True)
class JobOutcome:
    """What InMemoryJobQueue.drain records for each job it ran."""

    job: Job
    result: object = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
