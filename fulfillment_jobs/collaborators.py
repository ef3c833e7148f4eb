"""
External collaborators of the pick bin queue.

Label printers, pack-station screens and metrics storage live outside the
kernel.  The dispatcher talks to them through these protocols; the
logging implementations are the defaults for single-process deployments
and tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from fulfillment_jobs.types import NotifyPackStation, PickMetrics, PrintBinLabel
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("jobs.collaborators")


@runtime_checkable
class LabelPrinter(Protocol):
    """Sends rendered ZPL to a network label printer."""

    def print_label(self, printer_id: str, zpl: str, copies: int) -> None: ...


@runtime_checkable
class PackStationNotifier(Protocol):
    """Tells pack-station screens that a bin is ready."""

    def bin_ready(self, notice: NotifyPackStation) -> None: ...


@runtime_checkable
class MetricsSink(Protocol):
    """Stores picker throughput."""

    def record(self, metrics: PickMetrics) -> None: ...


def render_bin_label(job: PrintBinLabel, printed_at: datetime) -> str:
    """ZPL for a 4x6 bin label: bin number, order, counts and a Code 128 barcode."""
    return "\n".join(
        [
            "^XA",
            f"^FO50,30^A0N,50,50^FD{job.bin_number}^FS",
            f"^FO50,100^A0N,30,30^FDOrder: {job.order_number}^FS",
            f"^FO50,145^A0N,25,25^FD{job.item_count} SKUs / {job.total_quantity} units^FS",
            "^FO50,200^BY3",
            "^BCN,100,Y,N,N",
            f"^FD{job.barcode}^FS",
            f"^FO50,340^A0N,20,20^FD{printed_at:%Y-%m-%d %H:%M}^FS",
            "^XZ",
        ]
    )


class LoggingLabelPrinter:
    def print_label(self, printer_id: str, zpl: str, copies: int) -> None:
        logger.info(
            "bin_label_printed",
            extra={"printer_id": printer_id, "copies": copies, "zpl_bytes": len(zpl)},
        )


class LoggingPackStationNotifier:
    def bin_ready(self, notice: NotifyPackStation) -> None:
        logger.info(
            "pack_station_notified",
            extra={
                "bin_number": notice.bin_number,
                "order_number": notice.order_number,
                "priority": notice.priority,
                "item_count": notice.item_count,
            },
        )


class LoggingMetricsSink:
    def record(self, metrics: PickMetrics) -> None:
        logger.info(
            "pick_metrics_recorded",
            extra={
                "task_number": metrics.task_number,
                "user_id": metrics.user_id,
                "item_count": metrics.item_count,
                "short_count": metrics.short_count,
                "duration_seconds": metrics.duration_seconds,
                "items_per_minute": metrics.items_per_minute,
            },
        )


class InMemoryMetricsSink:
    """Keeps recorded metrics in a list."""

    def __init__(self) -> None:
        self.recorded: list[PickMetrics] = []

    def record(self, metrics: PickMetrics) -> None:
        self.recorded.append(metrics)
