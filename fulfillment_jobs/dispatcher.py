"""
JobDispatcher -- exhaustive job dispatch with transaction-abort retry.

Contract:
    ``dispatch(job)`` runs one queue job and returns its result.  Jobs that
    touch the database run in their own unit of work via
    ``FulfillmentEngine.run``; collaborator calls never hold a transaction
    open.

Architecture: fulfillment_jobs (top-level).  Imports from the kernel;
    the kernel never imports from here.

Invariants enforced:
    - Every job class of WorkTaskJob | PickBinJob has a branch; the
      fall-through is ``assert_never``.
    - Only TransactionAbortError is retried, up to ``jobs.max_attempts``
      with linear backoff.  Other errors surface on the first attempt.
    - Every log line of a job carries its ``job_id``.

Failure modes:
    - JobRetriesExhaustedError when every attempt aborted.
    - Kernel errors (NotFound, InvalidTransition, Conflict) propagate.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, assert_never

from fulfillment_config import JobSettings
from fulfillment_jobs.collaborators import (
    LabelPrinter,
    LoggingLabelPrinter,
    LoggingMetricsSink,
    LoggingPackStationNotifier,
    MetricsSink,
    PackStationNotifier,
    render_bin_label,
)
from fulfillment_jobs.types import (
    AssignTask,
    CancelTask,
    CompleteTask,
    CreatePickingTask,
    HandleShortPick,
    Job,
    LabelPrintResult,
    NotifyPackStation,
    PickMetrics,
    PrintBinLabel,
    RecordPickMetrics,
    StartTask,
)
from fulfillment_kernel.exceptions import JobRetriesExhaustedError, TransactionAbortError
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.services.unit_of_work import FulfillmentEngine

logger = get_logger("jobs.dispatcher")


class JobDispatcher:
    """Runs queue jobs against the kernel.

    Non-goals:
        - Does NOT persist job state; the queue owns delivery.
        - Does NOT retry conflicts or missing entities.
    """

    def __init__(
        self,
        engine: FulfillmentEngine,
        settings: JobSettings | None = None,
        *,
        label_printer: LabelPrinter | None = None,
        notifier: PackStationNotifier | None = None,
        metrics: MetricsSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self._settings = settings or engine.config.jobs
        self._printer = label_printer or LoggingLabelPrinter()
        self._notifier = notifier or LoggingPackStationNotifier()
        self._metrics = metrics or LoggingMetricsSink()
        self._sleep = sleep

    def dispatch(self, job: Job) -> Any:
        """Run *job*, retrying transaction aborts.

        Raises:
            JobRetriesExhaustedError: Every attempt hit TransactionAbortError.
        """
        job_type = type(job).__name__
        max_attempts = self._settings.max_attempts

        with LogContext.bind(job_id=job.job_id):
            last_error: TransactionAbortError | None = None
            for attempt in range(1, max_attempts + 1):
                try:
                    result = self._execute(job)
                except TransactionAbortError as exc:
                    last_error = exc
                    logger.warning(
                        "job_attempt_aborted",
                        extra={
                            "job_type": job_type,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "reason": exc.reason,
                        },
                    )
                    if attempt < max_attempts:
                        self._sleep(self._settings.backoff_seconds * attempt)
                    continue
                except Exception:
                    logger.error(
                        "job_failed",
                        extra={"job_type": job_type, "attempt": attempt},
                        exc_info=True,
                    )
                    raise

                logger.info(
                    "job_completed",
                    extra={"job_type": job_type, "attempt": attempt},
                )
                return result

            logger.error(
                "job_retries_exhausted",
                extra={"job_type": job_type, "attempts": max_attempts},
            )
            raise JobRetriesExhaustedError(
                job_type, max_attempts, str(last_error)
            ) from last_error

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _execute(self, job: Job) -> Any:
        if isinstance(job, CreatePickingTask):
            return self._engine.run(
                lambda uow: uow.work_tasks.create_picking_task(
                    job.order_ids,
                    job.idempotency_key,
                    priority=job.priority,
                    notes=job.notes,
                    created_by=job.created_by,
                ),
                operation="create_picking_task",
            )
        elif isinstance(job, AssignTask):
            return self._engine.run(
                lambda uow: uow.work_tasks.assign_task(job.task_id, job.user_id),
                operation="assign_task",
            )
        elif isinstance(job, StartTask):
            return self._engine.run(
                lambda uow: uow.work_tasks.start_task(job.task_id, job.user_id),
                operation="start_task",
            )
        elif isinstance(job, CompleteTask):
            return self._engine.run(
                lambda uow: uow.work_tasks.complete_task(job.task_id, job.user_id),
                operation="complete_task",
            )
        elif isinstance(job, CancelTask):
            return self._engine.run(
                lambda uow: uow.work_tasks.cancel_task(
                    job.task_id, job.user_id, reason=job.reason
                ),
                operation="cancel_task",
            )
        elif isinstance(job, HandleShortPick):
            return self._engine.run(
                lambda uow: uow.short_picks.handle_short_pick(
                    job.task_item_id, job.reported_by
                ),
                operation="handle_short_pick",
            )
        elif isinstance(job, PrintBinLabel):
            return self._print_label(job)
        elif isinstance(job, NotifyPackStation):
            self._notifier.bin_ready(job)
            return True
        elif isinstance(job, RecordPickMetrics):
            return self._record_metrics(job)
        else:
            assert_never(job)

    def _print_label(self, job: PrintBinLabel) -> LabelPrintResult:
        zpl = render_bin_label(job, self._engine.clock.now())
        printed = False
        if job.printer_id:
            self._printer.print_label(job.printer_id, zpl, job.copies)
            printed = True
        return LabelPrintResult(bin_id=job.bin_id, printed=printed, zpl=zpl)

    def _record_metrics(self, job: RecordPickMetrics) -> PickMetrics:
        elapsed = (job.completed_at - job.started_at).total_seconds()
        per_minute = job.item_count / (elapsed / 60) if elapsed > 0 else 0.0
        metrics = PickMetrics(
            task_id=job.task_id,
            task_number=job.task_number,
            user_id=job.user_id,
            item_count=job.item_count,
            short_count=job.short_count,
            duration_seconds=round(elapsed),
            items_per_minute=round(per_minute, 2),
        )
        self._metrics.record(metrics)
        return metrics
