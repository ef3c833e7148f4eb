"""
Pytest fixtures for the fulfillment kernel test suite.

Provides:
- An in-memory SQLite Database per test (fresh schema every time)
- A DeterministicClock, an in-memory event publisher and a FulfillmentEngine
- A WarehouseBuilder that seeds variants, locations, units and orders
- Structured-logging fixtures (captured_logs) and LogContext cleanup

The in-memory database runs on a single shared connection, so tests must
not open overlapping transactions on it.  Concurrency tests build their own
file-backed Database (see tests/concurrency).
"""

import json
import logging
from datetime import date, datetime
from io import StringIO
from uuid import UUID

import pytest

from fulfillment_config import FulfillmentConfig
from fulfillment_kernel.db.engine import Database
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.events import InMemoryEventPublisher
from fulfillment_kernel.domain.states import InventoryUnitStatus, OrderStatus
from fulfillment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.models.order import Order, OrderItem
from fulfillment_kernel.services.unit_of_work import FulfillmentEngine


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fulfillment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.run(...)
            logs = captured_logs()
            assert any(r["message"] == "order_allocated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fulfillment_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as waiting on database locks across threads"
    )


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def config() -> FulfillmentConfig:
    return FulfillmentConfig()


@pytest.fixture
def engine(database, clock, config, publisher) -> FulfillmentEngine:
    return FulfillmentEngine(database, clock=clock, config=config, publisher=publisher)


# =============================================================================
# Builders
# =============================================================================


class WarehouseBuilder:
    """
    Seeds catalog, locations, stock and orders, one committed transaction
    per call.  Returned rows are detached; read their columns, not their
    lazy relationships.
    """

    def __init__(self, engine: FulfillmentEngine, clock: DeterministicClock):
        self._engine = engine
        self._clock = clock
        self._order_seq = 0

    def variant(
        self, sku: str, *, upc: str | None = None, barcode: str | None = None
    ) -> ProductVariant:
        def work(uow):
            variant = ProductVariant(sku=sku, upc=upc, barcode=barcode, title=sku.title())
            uow.inventory.add(variant)
            uow.inventory.flush()
            return variant

        return self._engine.run(work)

    def location(
        self,
        name: str,
        *,
        zone: str | None = "A",
        pick_sequence: int | None = None,
        barcode: str | None = None,
        is_pickable: bool = True,
    ) -> Location:
        def work(uow):
            location = Location(
                name=name,
                zone=zone,
                pick_sequence=pick_sequence,
                barcode=barcode,
                is_pickable=is_pickable,
            )
            uow.inventory.add(location)
            uow.inventory.flush()
            return location

        return self._engine.run(work)

    def unit(
        self,
        variant: ProductVariant,
        location: Location,
        quantity: int,
        *,
        expiry_date: date | None = None,
        lot_number: str | None = None,
        received_at: datetime | None = None,
        status: InventoryUnitStatus = InventoryUnitStatus.AVAILABLE,
    ) -> InventoryUnit:
        stamp = received_at or self._clock.now()
        self._clock.advance(1)

        def work(uow):
            unit = InventoryUnit(
                product_variant_id=variant.id,
                location_id=location.id,
                quantity=quantity,
                status=status,
                expiry_date=expiry_date,
                lot_number=lot_number,
                received_at=stamp,
            )
            uow.inventory.add(unit)
            uow.inventory.flush()
            return unit

        return self._engine.run(work)

    def order(
        self,
        lines: list[tuple[ProductVariant | str, int]],
        *,
        status: OrderStatus = OrderStatus.PENDING,
        order_number: str | None = None,
    ) -> Order:
        """
        Each line is ``(variant, quantity)``; pass a plain SKU string
        instead of a variant for an unmatched line.
        """
        self._order_seq += 1
        number = order_number or f"ORD-{self._order_seq:04d}"
        created_at = self._clock.now()
        self._clock.advance(1)

        def work(uow):
            order = Order(order_number=number, status=status, created_at=created_at)
            for line_number, (target, quantity) in enumerate(lines, start=1):
                if isinstance(target, str):
                    order.items.append(
                        OrderItem(line_number=line_number, sku=target, quantity=quantity)
                    )
                else:
                    order.items.append(
                        OrderItem(
                            line_number=line_number,
                            sku=target.sku,
                            product_variant_id=target.id,
                            quantity=quantity,
                        )
                    )
            uow.orders.add(order)
            uow.orders.flush()
            return order

        return self._engine.run(work)


@pytest.fixture
def warehouse(engine, clock) -> WarehouseBuilder:
    return WarehouseBuilder(engine, clock)


@pytest.fixture
def start_picking(engine):
    """
    Create, assign and start a picking task over *order_ids*.

    Returns the task id.
    """

    def _start(order_ids: list[UUID], key: str = "pick-1", user: str = "picker-1") -> UUID:
        task = engine.run(
            lambda uow: uow.work_tasks.create_picking_task(order_ids, key)
        )
        engine.run(lambda uow: uow.work_tasks.assign_task(task.id, user))
        engine.run(lambda uow: uow.work_tasks.start_task(task.id, user))
        return task.id

    return _start
