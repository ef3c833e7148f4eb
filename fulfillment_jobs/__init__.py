"""
Queue jobs for the fulfillment kernel.

Job payloads are frozen dataclasses forming the WorkTaskJob and PickBinJob
unions; JobDispatcher runs them against a FulfillmentEngine.
"""

from fulfillment_jobs.collaborators import (
    InMemoryMetricsSink,
    LabelPrinter,
    LoggingLabelPrinter,
    LoggingMetricsSink,
    LoggingPackStationNotifier,
    MetricsSink,
    PackStationNotifier,
    render_bin_label,
)
from fulfillment_jobs.dispatcher import JobDispatcher
from fulfillment_jobs.queue import InMemoryJobQueue
from fulfillment_jobs.relay import ShortPickRelay
from fulfillment_jobs.types import (
    AssignTask,
    CancelTask,
    CompleteTask,
    CreatePickingTask,
    HandleShortPick,
    Job,
    JobOutcome,
    LabelPrintResult,
    NotifyPackStation,
    PickBinJob,
    PickMetrics,
    PrintBinLabel,
    RecordPickMetrics,
    StartTask,
    WorkTaskJob,
)

__all__ = [
    "AssignTask",
    "CancelTask",
    "CompleteTask",
    "CreatePickingTask",
    "HandleShortPick",
    "InMemoryJobQueue",
    "InMemoryMetricsSink",
    "Job",
    "JobDispatcher",
    "JobOutcome",
    "LabelPrintResult",
    "LabelPrinter",
    "LoggingLabelPrinter",
    "LoggingMetricsSink",
    "LoggingPackStationNotifier",
    "MetricsSink",
    "NotifyPackStation",
    "PackStationNotifier",
    "PickBinJob",
    "PickMetrics",
    "PrintBinLabel",
    "RecordPickMetrics",
    "ShortPickRelay",
    "StartTask",
    "WorkTaskJob",
    "render_bin_label",
]
