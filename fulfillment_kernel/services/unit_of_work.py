"""
Unit of work -- one transaction, its repositories and its services.

Responsibility:
    ``UnitOfWork`` wires the SQL repositories and kernel services around a
    single session.  ``FulfillmentEngine.run(work)`` opens the transaction,
    hands the unit of work to the caller, commits, and only then forwards
    the buffered domain events to the real publisher.

Architecture position:
    Kernel > Services.  The composition root used by request handlers, the
    job dispatcher and tests.  Nothing below this module constructs a
    service graph.

Invariants enforced:
    - Subscribers never observe events from a rolled-back transaction.
    - Events raised inside a rolled-back savepoint are dropped with it.
    - Every service of one unit of work shares the same session, clock,
      settings and publisher.

Failure modes:
    - Whatever ``work`` raises propagates after rollback; retryable storage
      conflicts arrive as TransactionAbortError (see db.engine).
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import cached_property
from typing import TypeVar

from sqlalchemy.orm import Session

from fulfillment_config import FulfillmentConfig
from fulfillment_kernel.db.engine import Database
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.events import (
    BufferedEventPublisher,
    EventPublisher,
    LoggingEventPublisher,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.repositories.sql import (
    SqlAllocationRepository,
    SqlDiscrepancyRepository,
    SqlInventoryRepository,
    SqlOrderRepository,
    SqlPickBinRepository,
    SqlTaskItemRepository,
    SqlWorkTaskRepository,
)
from fulfillment_kernel.services.allocation_service import AllocationService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_status import OrderStatusProjection
from fulfillment_kernel.services.pick_bin_service import PickBinService
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.services.short_pick_service import ShortPickService
from fulfillment_kernel.services.work_task_service import WorkTaskService

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


class UnitOfWork:
    """
    Repositories and services bound to one open session.

    Contract:
        Built by FulfillmentEngine.run; callers never commit through it.
        Components are created lazily and cached for the unit's lifetime.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: FulfillmentConfig,
        events: BufferedEventPublisher,
    ):
        self.session = session
        self.clock = clock
        self.config = config
        self.events = events

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """
        Nested transaction paired with an event-buffer checkpoint.

        On error both the rows and the events written inside are discarded
        and the exception re-raised.
        """
        mark = self.events.checkpoint()
        nested = self.session.begin_nested()
        try:
            yield
        except Exception:
            nested.rollback()
            dropped = self.events.discard_since(mark)
            logger.debug("savepoint_rolled_back", extra={"events_dropped": dropped})
            raise
        else:
            nested.commit()

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    @cached_property
    def orders(self) -> SqlOrderRepository:
        return SqlOrderRepository(self.session)

    @cached_property
    def inventory(self) -> SqlInventoryRepository:
        return SqlInventoryRepository(self.session)

    @cached_property
    def allocations(self) -> SqlAllocationRepository:
        return SqlAllocationRepository(self.session)

    @cached_property
    def tasks(self) -> SqlWorkTaskRepository:
        return SqlWorkTaskRepository(self.session)

    @cached_property
    def task_items(self) -> SqlTaskItemRepository:
        return SqlTaskItemRepository(self.session)

    @cached_property
    def pick_bins(self) -> SqlPickBinRepository:
        return SqlPickBinRepository(self.session)

    @cached_property
    def discrepancies(self) -> SqlDiscrepancyRepository:
        return SqlDiscrepancyRepository(self.session)

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    @cached_property
    def sequences(self) -> SequenceService:
        return SequenceService(self.session, self.clock)

    @cached_property
    def ledger(self) -> InventoryLedger:
        return InventoryLedger(self.inventory, self.allocations, self.clock)

    @cached_property
    def order_status(self) -> OrderStatusProjection:
        return OrderStatusProjection(self.orders, self.clock, self.events)

    @cached_property
    def allocation(self) -> AllocationService:
        return AllocationService(
            self.orders,
            self.inventory,
            self.allocations,
            self.ledger,
            self.order_status,
            self.clock,
            self.events,
            self.config.allocation,
            self.savepoint,
        )

    @cached_property
    def work_tasks(self) -> WorkTaskService:
        return WorkTaskService(
            self.tasks,
            self.task_items,
            self.orders,
            self.inventory,
            self.allocations,
            self.allocation,
            self.ledger,
            self.order_status,
            self.bins,
            self.sequences,
            self.clock,
            self.events,
            self.config.pick_path,
            self.savepoint,
        )

    @cached_property
    def short_picks(self) -> ShortPickService:
        return ShortPickService(
            self.task_items,
            self.inventory,
            self.discrepancies,
            self.clock,
            self.events,
            self.config.short_pick,
        )

    @cached_property
    def bins(self) -> PickBinService:
        return PickBinService(
            self.pick_bins,
            self.tasks,
            self.task_items,
            self.orders,
            self.inventory,
            self.sequences,
            self.clock,
            self.events,
        )


class FulfillmentEngine:
    """
    Entry point that runs work in a transaction.

    Contract:
        ``run(work)`` returns whatever ``work(uow)`` returns.  Buffered
        events go to *publisher* after commit; on any exception they are
        discarded and the exception propagates.

    Non-goals:
        - Does NOT retry; the job dispatcher owns retry policy.
    """

    def __init__(
        self,
        database: Database,
        clock: Clock | None = None,
        config: FulfillmentConfig | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.database = database
        self.clock = clock or SystemClock()
        self.config = config or FulfillmentConfig()
        self.publisher = publisher or LoggingEventPublisher()

    def run(
        self, work: Callable[[UnitOfWork], T], operation: str | None = None
    ) -> T:
        events = BufferedEventPublisher()
        try:
            with self.database.session_scope(operation) as session:
                result = work(UnitOfWork(session, self.clock, self.config, events))
        except Exception:
            dropped = events.discard()
            if dropped:
                logger.info(
                    "events_discarded",
                    extra={"operation": operation, "event_count": dropped},
                )
            raise

        published = events.flush_to(self.publisher)
        logger.debug(
            "events_published",
            extra={"operation": operation, "event_count": published},
        )
        return result
