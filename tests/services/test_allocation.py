"""
AllocationService tests.

Covers:
- FEFO then FIFO unit selection, non-pickable locations skipped
- The two-unit end-to-end scenario (6 from the earlier-expiring unit, 4 from the next)
- Recomputation stability (re-running never duplicates or decreases)
- Order status derivation, including unmatched-line holds
- Batch isolation: per-order failures are captured, others proceed
- Release and backorder re-drive after restock
- No over-commit across many orders (property-based)
"""

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fulfillment_config import FulfillmentConfig
from fulfillment_kernel.db.engine import Database
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.dtos import ItemAllocationStatus
from fulfillment_kernel.domain.events import EventType, InMemoryEventPublisher
from fulfillment_kernel.domain.states import (
    COMMITTED_ALLOCATION_STATUSES,
    AllocationStatus,
    OrderStatus,
)
from fulfillment_kernel.exceptions import OrderNotAllocatableError, OrderNotFoundError
from fulfillment_kernel.services.unit_of_work import FulfillmentEngine


# =============================================================================
# Helpers
# =============================================================================


def _allocate(engine, order_id, **kwargs):
    return engine.run(lambda uow: uow.allocation.allocate_order(order_id, **kwargs))


def _order_status(engine, order_id):
    return engine.run(lambda uow: OrderStatus(uow.orders.get(order_id).status))


def _allocated_quantities(engine, order_id):
    return engine.run(
        lambda uow: [item.quantity_allocated for item in uow.orders.get(order_id).items]
    )


def _free(engine, unit_id):
    return engine.run(lambda uow: uow.ledger.free_quantity(uow.inventory.get_unit(unit_id)))


def _allocation_rows(engine, order_id):
    return engine.run(
        lambda uow: [
            (a.inventory_unit_id, a.quantity, AllocationStatus(a.status))
            for a in uow.allocations.list_for_order(order_id, set(AllocationStatus))
        ]
    )


@pytest.fixture
def sku_a(warehouse):
    return warehouse.variant("SKU-A")


@pytest.fixture
def bin_a1(warehouse):
    return warehouse.location("A-01", pick_sequence=1)


# =============================================================================
# Unit selection
# =============================================================================


class TestUnitSelection:
    """FEFO, then FIFO, then id."""

    def test_end_to_end_two_unit_scenario(self, engine, warehouse, clock, sku_a, bin_a1):
        today = clock.now().date()
        unit_x = warehouse.unit(sku_a, bin_a1, 6, expiry_date=today + timedelta(days=5))
        unit_y = warehouse.unit(sku_a, bin_a1, 10, expiry_date=today + timedelta(days=30))
        order = warehouse.order([(sku_a, 10)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.ALLOCATED
        assert [(line.inventory_unit_id, line.quantity) for line in result.allocations] == [
            (unit_x.id, 6),
            (unit_y.id, 4),
        ]
        assert _allocated_quantities(engine, order.id) == [10]
        assert _order_status(engine, order.id) == OrderStatus.ALLOCATED
        assert _free(engine, unit_x.id) == 0
        assert _free(engine, unit_y.id) == 6

    def test_earlier_expiry_wins_over_earlier_receipt(self, engine, warehouse, sku_a, bin_a1):
        late_expiry = warehouse.unit(sku_a, bin_a1, 5, expiry_date=date(2026, 6, 1))
        early_expiry = warehouse.unit(sku_a, bin_a1, 5, expiry_date=date(2026, 3, 1))
        order = warehouse.order([(sku_a, 3)])

        result = _allocate(engine, order.id)

        assert [line.inventory_unit_id for line in result.allocations] == [early_expiry.id]
        assert _free(engine, late_expiry.id) == 5

    def test_undated_units_consumed_after_dated_ones(self, engine, warehouse, sku_a, bin_a1):
        undated = warehouse.unit(sku_a, bin_a1, 5)
        dated = warehouse.unit(sku_a, bin_a1, 5, expiry_date=date(2027, 1, 1))
        order = warehouse.order([(sku_a, 7)])

        result = _allocate(engine, order.id)

        assert [(line.inventory_unit_id, line.quantity) for line in result.allocations] == [
            (dated.id, 5),
            (undated.id, 2),
        ]

    def test_oldest_receipt_first_without_expiry(self, engine, warehouse, sku_a, bin_a1):
        older = warehouse.unit(sku_a, bin_a1, 4)
        newer = warehouse.unit(sku_a, bin_a1, 4)
        order = warehouse.order([(sku_a, 5)])

        result = _allocate(engine, order.id)

        assert [(line.inventory_unit_id, line.quantity) for line in result.allocations] == [
            (older.id, 4),
            (newer.id, 1),
        ]

    def test_non_pickable_location_skipped(self, engine, warehouse, sku_a, bin_a1):
        reserve = warehouse.location("BULK-01", zone="R", is_pickable=False)
        warehouse.unit(sku_a, reserve, 50, expiry_date=date(2026, 2, 1))
        pickable = warehouse.unit(sku_a, bin_a1, 2)
        order = warehouse.order([(sku_a, 5)])

        result = _allocate(engine, order.id)

        assert [line.inventory_unit_id for line in result.allocations] == [pickable.id]
        assert result.allocated_items == 2
        assert result.backordered_items == 3

    def test_lot_number_carried_onto_allocation(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5, lot_number="LOT-7")
        order = warehouse.order([(sku_a, 1)])

        result = _allocate(engine, order.id)

        assert result.allocations[0].lot_number == "LOT-7"

    def test_units_not_available_are_ignored(self, engine, warehouse, sku_a, bin_a1):
        from fulfillment_kernel.domain.states import InventoryUnitStatus

        warehouse.unit(sku_a, bin_a1, 5, status=InventoryUnitStatus.DAMAGED)
        order = warehouse.order([(sku_a, 1)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.BACKORDERED
        assert result.allocations == ()


# =============================================================================
# Status derivation and recomputation
# =============================================================================


class TestAllocationOutcome:
    def test_shortage_is_reported_not_raised(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 3)
        order = warehouse.order([(sku_a, 5)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.PARTIALLY_ALLOCATED
        assert result.allocated_items == 3
        assert result.backordered_items == 2
        assert result.items[0].status == ItemAllocationStatus.PARTIAL

    def test_no_stock_backorders(self, engine, warehouse, sku_a):
        order = warehouse.order([(sku_a, 5)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.BACKORDERED
        assert result.items[0].status == ItemAllocationStatus.NONE
        assert result.backordered_items == 5

    def test_partial_disallowed_backorders(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 3)
        order = warehouse.order([(sku_a, 5)])

        result = _allocate(engine, order.id, allow_partial=False)

        assert result.status == OrderStatus.BACKORDERED
        assert result.backordered_items == 2

    def test_partial_setting_comes_from_config(self, database, clock, publisher, warehouse, sku_a, bin_a1):
        from fulfillment_config import AllocationSettings

        strict = FulfillmentEngine(
            database,
            clock=clock,
            config=FulfillmentConfig(allocation=AllocationSettings(allow_partial=False)),
            publisher=publisher,
        )
        warehouse.unit(sku_a, bin_a1, 3)
        order = warehouse.order([(sku_a, 5)])

        assert _allocate(strict, order.id).status == OrderStatus.BACKORDERED

    def test_recomputation_is_stable(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 3)
        order = warehouse.order([(sku_a, 5)])

        first = _allocate(engine, order.id)
        second = _allocate(engine, order.id)

        assert first.allocated_items == second.allocated_items == 3
        assert second.allocations == ()
        assert len(_allocation_rows(engine, order.id)) == 1
        assert _allocated_quantities(engine, order.id) == [3]

    def test_recomputation_picks_up_new_stock(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 3)
        order = warehouse.order([(sku_a, 5)])
        _allocate(engine, order.id)

        warehouse.unit(sku_a, bin_a1, 10)
        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.ALLOCATED
        assert result.newly_allocated_quantity == 2
        assert _allocated_quantities(engine, order.id) == [5]

    def test_fully_allocated_order_is_not_allocatable(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 5)])
        _allocate(engine, order.id)

        with pytest.raises(OrderNotAllocatableError) as exc_info:
            _allocate(engine, order.id)
        assert exc_info.value.status == "ALLOCATED"

    def test_unknown_order(self, engine):
        from uuid import uuid4

        with pytest.raises(OrderNotFoundError):
            _allocate(engine, uuid4())

    @pytest.mark.parametrize(
        "status", [OrderStatus.ON_HOLD, OrderStatus.PICKING, OrderStatus.CANCELLED]
    )
    def test_excluded_statuses(self, engine, warehouse, sku_a, status):
        order = warehouse.order([(sku_a, 1)], status=status)
        with pytest.raises(OrderNotAllocatableError):
            _allocate(engine, order.id)

    def test_empty_order_backorders(self, engine, warehouse):
        order = warehouse.order([])
        result = _allocate(engine, order.id)
        assert result.status == OrderStatus.BACKORDERED
        assert result.total_items == 0


class TestUnmatchedLines:
    def test_all_unmatched_holds(self, engine, warehouse):
        order = warehouse.order([("UNKNOWN-1", 1), ("UNKNOWN-2", 2)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.ON_HOLD
        assert result.unmatched_items == 2
        assert all(i.status == ItemAllocationStatus.UNMATCHED for i in result.items)
        hold_reason = engine.run(lambda uow: uow.orders.get(order.id).hold_reason)
        assert hold_reason == "All 2 items unmatched"

    def test_some_unmatched_with_stock_is_partial(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 5), ("UNKNOWN-1", 1)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.PARTIALLY_ALLOCATED
        assert result.unmatched_items == 1
        assert result.allocated_items == 5

    def test_some_unmatched_without_stock_holds(self, engine, warehouse, sku_a):
        order = warehouse.order([(sku_a, 5), ("UNKNOWN-1", 1)])

        result = _allocate(engine, order.id)

        assert result.status == OrderStatus.ON_HOLD
        hold_reason = engine.run(lambda uow: uow.orders.get(order.id).hold_reason)
        assert hold_reason == "1 unmatched, 5 backordered"


# =============================================================================
# Batches
# =============================================================================


class TestBatchAllocation:
    def test_failures_are_isolated(self, engine, warehouse, sku_a, bin_a1):
        from uuid import uuid4

        warehouse.unit(sku_a, bin_a1, 5)
        good = warehouse.order([(sku_a, 2)])
        held = warehouse.order([(sku_a, 1)], status=OrderStatus.ON_HOLD)
        missing = uuid4()

        batch = engine.run(
            lambda uow: uow.allocation.allocate_orders([good.id, missing, held.id])
        )

        assert batch.fully_allocated == (good.id,)
        assert {(e.order_id, e.code) for e in batch.errors} == {
            (missing, "ORDER_NOT_FOUND"),
            (held.id, "ORDER_NOT_ALLOCATABLE"),
        }
        assert _allocated_quantities(engine, good.id) == [2]

    def test_orders_bucketed_by_outcome(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 4)
        first = warehouse.order([(sku_a, 3)])
        second = warehouse.order([(sku_a, 3)])
        third = warehouse.order([(sku_a, 3)])
        unmatched = warehouse.order([("NOPE", 1)])

        batch = engine.run(
            lambda uow: uow.allocation.allocate_orders(
                [first.id, second.id, third.id, unmatched.id]
            )
        )

        assert batch.fully_allocated == (first.id,)
        assert batch.partially_allocated == (second.id,)
        assert batch.backordered == (third.id,)
        assert batch.on_hold == (unmatched.id,)
        assert len(batch.results) == 4

    def test_duplicate_ids_allocated_once(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 2)])

        batch = engine.run(lambda uow: uow.allocation.allocate_orders([order.id, order.id]))

        assert batch.fully_allocated == (order.id,)
        assert batch.errors == ()


# =============================================================================
# Release and backorders
# =============================================================================


class TestRelease:
    def test_release_restores_free_quantity(self, engine, warehouse, publisher, sku_a, bin_a1):
        unit = warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 4)])
        _allocate(engine, order.id)

        released = engine.run(lambda uow: uow.allocation.release_allocations(order.id))

        assert released == 1
        assert _free(engine, unit.id) == 5
        assert _allocated_quantities(engine, order.id) == [0]
        assert [s for _, _, s in _allocation_rows(engine, order.id)] == [AllocationStatus.RELEASED]
        event = publisher.of_type(EventType.INVENTORY_RELEASED)[0]
        assert event.payload["quantity"] == 4

    def test_release_without_allocations_is_noop(self, engine, warehouse, publisher, sku_a):
        order = warehouse.order([(sku_a, 4)])
        assert engine.run(lambda uow: uow.allocation.release_allocations(order.id)) == 0
        assert publisher.of_type(EventType.INVENTORY_RELEASED) == []


class TestBackorders:
    def test_backorders_listed_oldest_first(self, engine, warehouse, sku_a, bin_a1):
        other = warehouse.variant("SKU-B")
        first = warehouse.order([(sku_a, 2)])
        second = warehouse.order([(sku_a, 2)])
        unrelated = warehouse.order([(other, 2)])
        for order in (second, first, unrelated):
            _allocate(engine, order.id)

        waiting = engine.run(lambda uow: uow.allocation.check_backordered_orders(sku_a.id))

        assert waiting == [first.id, second.id]

    def test_restock_redrives_oldest_first(self, engine, warehouse, sku_a, bin_a1):
        first = warehouse.order([(sku_a, 3)])
        second = warehouse.order([(sku_a, 3)])
        _allocate(engine, first.id)
        _allocate(engine, second.id)

        def restock(uow):
            uow.ledger.receive(
                uow.inventory.get_variant(sku_a.id), uow.inventory.get_location(bin_a1.id), 4
            )
            return uow.allocation.reallocate_backorders(sku_a.id)

        batch = engine.run(restock)

        assert batch.fully_allocated == (first.id,)
        assert batch.partially_allocated == (second.id,)
        assert _allocated_quantities(engine, second.id) == [1]

    def test_fully_allocated_orders_not_listed(self, engine, warehouse, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 5)])
        _allocate(engine, order.id)
        assert engine.run(lambda uow: uow.allocation.check_backordered_orders(sku_a.id)) == []


class TestAllocationEvents:
    def test_allocated_event_published_after_commit(self, engine, warehouse, publisher, sku_a, bin_a1):
        warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 2)])

        _allocate(engine, order.id)

        [event] = publisher.of_type(EventType.INVENTORY_ALLOCATED)
        assert event.payload["order_id"] == str(order.id)
        assert event.payload["quantity"] == 2
        changes = publisher.of_type(EventType.ORDER_STATUS_CHANGED)
        assert changes[-1].payload["to_status"] == "ALLOCATED"

    def test_rolled_back_allocation_publishes_nothing(self, engine, warehouse, publisher, sku_a, bin_a1):
        unit = warehouse.unit(sku_a, bin_a1, 5)
        order = warehouse.order([(sku_a, 2)])

        def work(uow):
            uow.allocation.allocate_order(order.id)
            raise RuntimeError("handler failed after allocating")

        with pytest.raises(RuntimeError):
            engine.run(work)

        assert publisher.of_type(EventType.INVENTORY_ALLOCATED) == []
        assert _free(engine, unit.id) == 5
        assert _order_status(engine, order.id) == OrderStatus.PENDING


# =============================================================================
# Property-based: no over-commit
# =============================================================================


class TestNoOverCommit:
    @given(
        unit_quantities=st.lists(st.integers(min_value=1, max_value=8), min_size=1, max_size=4),
        order_quantities=st.lists(st.integers(min_value=1, max_value=10), min_size=1, max_size=6),
    )
    @settings(max_examples=25, deadline=None)
    def test_reservations_never_exceed_unit_quantity(self, unit_quantities, order_quantities):
        from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
        from fulfillment_kernel.models.order import Order, OrderItem

        database = Database("sqlite://")
        database.create_tables()
        try:
            clock = DeterministicClock()
            engine = FulfillmentEngine(database, clock=clock, publisher=InMemoryEventPublisher())

            def seed(uow):
                variant = ProductVariant(sku="SKU-P")
                location = Location(name="P-01", zone="P", pick_sequence=1)
                uow.inventory.add(variant)
                uow.inventory.add(location)
                uow.inventory.flush()
                unit_ids = []
                for quantity in unit_quantities:
                    clock.advance(1)
                    unit = InventoryUnit(
                        product_variant_id=variant.id,
                        location_id=location.id,
                        quantity=quantity,
                        received_at=clock.now(),
                    )
                    uow.inventory.add(unit)
                    uow.inventory.flush()
                    unit_ids.append(unit.id)
                order_ids = []
                for n, quantity in enumerate(order_quantities):
                    order = Order(order_number=f"P-{n}")
                    order.items.append(
                        OrderItem(sku="SKU-P", product_variant_id=variant.id, quantity=quantity)
                    )
                    uow.orders.add(order)
                    uow.orders.flush()
                    order_ids.append(order.id)
                return unit_ids, order_ids

            unit_ids, order_ids = engine.run(seed)
            for order_id in order_ids:
                engine.run(lambda uow: uow.allocation.allocate_order(order_id))

            def check(uow):
                total = 0
                for unit_id in unit_ids:
                    unit = uow.inventory.get_unit(unit_id)
                    reserved = uow.allocations.sum_for_unit(unit_id, COMMITTED_ALLOCATION_STATUSES)
                    assert reserved <= unit.quantity
                    total += reserved
                for order_id in order_ids:
                    for item in uow.orders.get(order_id).items:
                        assert 0 <= item.quantity_allocated <= item.quantity
                return total

            total_reserved = engine.run(check)
            assert total_reserved == min(sum(unit_quantities), sum(order_quantities))
        finally:
            database.dispose()
