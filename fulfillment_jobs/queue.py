"""
InMemoryJobQueue -- FIFO queue for single-process deployments and tests.

Jobs enqueued while draining (for example by ShortPickRelay reacting to
events of a job that just committed) are run in the same drain.  A failed
job is recorded in its JobOutcome and does not stop the queue.
"""

from __future__ import annotations

from collections import deque

from fulfillment_jobs.dispatcher import JobDispatcher
from fulfillment_jobs.types import Job, JobOutcome
from fulfillment_kernel.exceptions import FulfillmentKernelError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("jobs.queue")


class InMemoryJobQueue:
    def __init__(self) -> None:
        self._jobs: deque[Job] = deque()

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, job: Job) -> None:
        self._jobs.append(job)
        logger.debug(
            "job_enqueued",
            extra={"job_type": type(job).__name__, "job_id": str(job.job_id), "depth": len(self._jobs)},
        )

    def drain(self, dispatcher: JobDispatcher) -> list[JobOutcome]:
        """Dispatch queued jobs in order until the queue is empty."""
        outcomes: list[JobOutcome] = []
        while self._jobs:
            job = self._jobs.popleft()
            try:
                result = dispatcher.dispatch(job)
            except FulfillmentKernelError as exc:
                outcomes.append(JobOutcome(job=job, error=exc))
                continue
            outcomes.append(JobOutcome(job=job, result=result))

        failed = sum(1 for o in outcomes if not o.succeeded)
        if outcomes:
            logger.info(
                "job_queue_drained",
                extra={"job_count": len(outcomes), "failed_count": failed},
            )
        return outcomes
