"""
PickBinService tests.

Covers:
- Bin creation from a completed picking task (per-variant totals, numbering)
- Idempotent creation per (task, order)
- Pack-station lookup, item verification and completion
- Closed bins reject further scans
"""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.events import EventType
from fulfillment_kernel.domain.states import PickBinStatus
from fulfillment_kernel.exceptions import (
    BinClosedError,
    BinIncompleteError,
    BinItemNotFoundError,
    InvalidQuantityError,
    InvalidTransitionError,
    OrderNotFoundError,
    PickBinNotFoundError,
    TaskNotCompletedError,
    TaskNotFoundError,
)


@pytest.fixture
def catalog(warehouse):
    sku_a = warehouse.variant("SKU-A", upc="000111")
    sku_b = warehouse.variant("SKU-B", barcode="BC-B")
    a01 = warehouse.location("A-01", pick_sequence=1)
    a02 = warehouse.location("A-02", pick_sequence=2)
    warehouse.unit(sku_a, a01, 10)
    warehouse.unit(sku_b, a02, 10)
    return SimpleNamespace(sku_a=sku_a, sku_b=sku_b)


@pytest.fixture
def pick_all(engine, start_picking):
    """Start a task over the orders and pick *picks* (default: everything)."""

    def _pick_all(order_ids, key="pick-1", picks=None):
        task_id = start_picking(order_ids, key=key)
        items = engine.run(
            lambda uow: [
                (i.id, i.quantity_required) for i in uow.work_tasks.get_task_items(task_id)
            ]
        )
        for index, (item_id, required) in enumerate(items):
            quantity = required if picks is None else picks[index]
            engine.run(
                lambda uow: uow.work_tasks.record_item_completion(item_id, "picker-1", quantity)
            )
        return task_id

    return _pick_all


@pytest.fixture
def picked(warehouse, catalog, pick_all):
    order = warehouse.order([(catalog.sku_a, 3), (catalog.sku_b, 2)])
    return SimpleNamespace(order=order, task_id=pick_all([order.id]))


def _create(engine, task_id, order_id):
    return engine.run(lambda uow: uow.bins.create_pick_bin(task_id, order_id))


def _bin_items(engine, bin_id):
    return engine.run(
        lambda uow: [
            (i.sku, i.quantity, i.verified_quantity) for i in uow.pick_bins.get(bin_id).items
        ]
    )


def _bin_status(engine, bin_id):
    return engine.run(lambda uow: PickBinStatus(uow.pick_bins.get(bin_id).status))


class TestCreatePickBin:
    def test_bin_built_from_picked_quantities(self, engine, picked):
        pick_bin = _create(engine, picked.task_id, picked.order.id)

        assert pick_bin.bin_number == "BIN-000001"
        assert pick_bin.barcode == "BIN-20260101-00001"
        assert PickBinStatus(pick_bin.status) == PickBinStatus.STAGED
        assert pick_bin.picked_by == "picker-1"
        assert pick_bin.order_id == picked.order.id
        assert pick_bin.pick_task_id == picked.task_id
        assert _bin_items(engine, pick_bin.id) == [("SKU-A", 3, 0), ("SKU-B", 2, 0)]

    def test_creation_is_idempotent(self, engine, picked):
        first = _create(engine, picked.task_id, picked.order.id)
        second = _create(engine, picked.task_id, picked.order.id)

        assert first.id == second.id
        assert second.bin_number == "BIN-000001"

    def test_bins_numbered_per_order(self, engine, warehouse, catalog, pick_all):
        first = warehouse.order([(catalog.sku_a, 1)])
        second = warehouse.order([(catalog.sku_b, 1)])
        task_id = pick_all([first.id, second.id])

        bins = [_create(engine, task_id, o.id) for o in (first, second)]

        assert [b.bin_number for b in bins] == ["BIN-000001", "BIN-000002"]
        assert _bin_items(engine, bins[1].id) == [("SKU-B", 1, 0)]

    def test_short_pick_quantity_used(self, engine, warehouse, catalog, pick_all):
        order = warehouse.order([(catalog.sku_a, 5)])
        task_id = pick_all([order.id], picks=[3])

        pick_bin = _create(engine, task_id, order.id)

        assert _bin_items(engine, pick_bin.id) == [("SKU-A", 3, 0)]

    def test_nothing_picked(self, engine, warehouse, catalog, pick_all):
        order = warehouse.order([(catalog.sku_a, 2)])
        task_id = pick_all([order.id], picks=[0])

        with pytest.raises(InvalidQuantityError):
            _create(engine, task_id, order.id)

    def test_task_must_be_completed(self, engine, warehouse, catalog, start_picking):
        order = warehouse.order([(catalog.sku_a, 2)])
        task_id = start_picking([order.id])

        with pytest.raises(TaskNotCompletedError) as exc_info:
            _create(engine, task_id, order.id)
        assert exc_info.value.status == "IN_PROGRESS"

    def test_unknown_task(self, engine, picked):
        with pytest.raises(TaskNotFoundError):
            _create(engine, uuid4(), picked.order.id)

    def test_unknown_order(self, engine, picked):
        with pytest.raises(OrderNotFoundError):
            _create(engine, picked.task_id, uuid4())

    def test_created_event(self, engine, picked, publisher):
        _create(engine, picked.task_id, picked.order.id)

        [event] = publisher.of_type(EventType.PICKBIN_CREATED)
        assert event.payload["order_number"] == "ORD-0001"
        assert event.payload["item_count"] == 2
        assert event.payload["total_quantity"] == 5
        assert event.payload["status"] == "STAGED"


class TestConsolidationOnCompletion:
    def test_last_pick_stages_bin(self, engine, warehouse, catalog, pick_all, publisher):
        order = warehouse.order([(catalog.sku_a, 3), (catalog.sku_b, 2)])
        task_id = pick_all([order.id])

        pick_bin = engine.run(lambda uow: uow.pick_bins.get_for_task_order(task_id, order.id))

        assert pick_bin is not None
        assert PickBinStatus(pick_bin.status) == PickBinStatus.STAGED
        assert pick_bin.bin_number == "BIN-000001"
        assert pick_bin.picked_by == "picker-1"
        assert _bin_items(engine, pick_bin.id) == [("SKU-A", 3, 0), ("SKU-B", 2, 0)]
        types = [e.event_type for e in publisher.events]
        assert types.index(EventType.TASK_COMPLETED) < types.index(EventType.PICKBIN_CREATED)

    def test_staged_bin_is_reachable_at_pack_station(self, engine, warehouse, catalog, pick_all):
        order = warehouse.order([(catalog.sku_a, 1)])
        pick_all([order.id])

        lookup = engine.run(lambda uow: uow.bins.get_order_by_bin_barcode("BIN-20260101-00001"))

        assert lookup.order_id == order.id
        assert [(i.sku, i.quantity) for i in lookup.items] == [("SKU-A", 1)]

    def test_one_bin_per_order_with_picked_stock(self, engine, warehouse, catalog, pick_all):
        first = warehouse.order([(catalog.sku_a, 2)])
        second = warehouse.order([(catalog.sku_b, 2)])
        task_id = pick_all([first.id, second.id], picks=[2, 0])

        bins = engine.run(
            lambda uow: [
                uow.pick_bins.get_for_task_order(task_id, o.id) for o in (first, second)
            ]
        )

        assert bins[0] is not None
        assert bins[0].bin_number == "BIN-000001"
        assert bins[1] is None

    def test_skipped_task_stages_nothing(self, engine, warehouse, catalog, start_picking):
        order = warehouse.order([(catalog.sku_a, 2)])
        task_id = start_picking([order.id])
        item_id = engine.run(lambda uow: uow.work_tasks.get_next_item(task_id).id)

        outcome = engine.run(lambda uow: uow.work_tasks.skip_item(item_id, "picker-1", "blocked aisle"))

        assert outcome.task_complete
        assert engine.run(lambda uow: uow.pick_bins.get_for_task_order(task_id, order.id)) is None

    def test_explicit_creation_returns_staged_bin(self, engine, picked):
        staged = engine.run(
            lambda uow: uow.pick_bins.get_for_task_order(picked.task_id, picked.order.id)
        )

        assert _create(engine, picked.task_id, picked.order.id).id == staged.id


class TestPackStation:
    @pytest.fixture
    def bin_id(self, engine, picked):
        return _create(engine, picked.task_id, picked.order.id).id

    def test_stage_records_location(self, engine, bin_id):
        staged = engine.run(lambda uow: uow.bins.stage_bin(bin_id, "STAGE-3"))

        assert staged.staging_location == "STAGE-3"
        assert PickBinStatus(staged.status) == PickBinStatus.STAGED

    def test_barcode_lookup_starts_scanning(self, engine, bin_id):
        lookup = engine.run(
            lambda uow: uow.bins.get_order_by_bin_barcode(" BIN-20260101-00001 ")
        )

        assert lookup.bin_id == bin_id
        assert lookup.order_number == "ORD-0001"
        assert lookup.status == PickBinStatus.SCANNING
        assert [(i.sku, i.quantity, i.is_verified) for i in lookup.items] == [
            ("SKU-A", 3, False),
            ("SKU-B", 2, False),
        ]
        assert _bin_status(engine, bin_id) == PickBinStatus.SCANNING

    def test_unknown_barcode(self, engine, bin_id):
        with pytest.raises(PickBinNotFoundError):
            engine.run(lambda uow: uow.bins.get_order_by_bin_barcode("BIN-19990101-00001"))

    def test_verify_by_upc_counts_one(self, engine, bin_id):
        result = engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "000111"))

        assert result.verified
        assert result.sku == "SKU-A"
        assert (result.verified_quantity, result.quantity) == (1, 3)
        assert result.progress == "1/5"
        assert not result.all_verified
        assert _bin_status(engine, bin_id) == PickBinStatus.SCANNING

    def test_verify_quantity_clamped_to_remaining(self, engine, bin_id):
        result = engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A", quantity=10))

        assert result.verified_quantity == 3
        assert result.progress == "3/5"

    def test_fully_verified_item_not_counted_again(self, engine, bin_id):
        engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "BC-B", quantity=2))

        again = engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "bc-b"))

        assert not again.verified
        assert again.verified_quantity == 2

    def test_sku_match_is_case_insensitive(self, engine, bin_id):
        result = engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "sku-b"))
        assert result.sku == "SKU-B"

    def test_unknown_item_barcode(self, engine, bin_id):
        with pytest.raises(BinItemNotFoundError) as exc_info:
            engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "NOT-IN-BIN"))
        assert exc_info.value.barcode == "NOT-IN-BIN"

    def test_complete_requires_every_item_verified(self, engine, bin_id):
        engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A", quantity=3))

        with pytest.raises(BinIncompleteError) as exc_info:
            engine.run(lambda uow: uow.bins.complete_bin(bin_id, "packer-1"))
        assert exc_info.value.unverified_skus == ["SKU-B"]

    def test_complete_after_full_verification(self, engine, bin_id, publisher):
        engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A", quantity=3))
        last = engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-B", quantity=2))
        assert last.all_verified

        done = engine.run(lambda uow: uow.bins.complete_bin(bin_id, "packer-1"))

        assert PickBinStatus(done.status) == PickBinStatus.COMPLETED
        assert done.packed_by == "packer-1"
        assert done.packed_at is not None
        assert len(publisher.of_type(EventType.PICKBIN_COMPLETED)) == 1

    def test_completed_bin_is_closed(self, engine, bin_id):
        engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A", quantity=3))
        engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-B", quantity=2))
        engine.run(lambda uow: uow.bins.complete_bin(bin_id))

        with pytest.raises(BinClosedError):
            engine.run(lambda uow: uow.bins.get_order_by_bin_barcode("BIN-20260101-00001"))
        with pytest.raises(BinClosedError):
            engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A"))

    def test_staged_bin_cannot_complete(self, engine, bin_id):
        def verify_everything_without_scanning(uow):
            for item in uow.pick_bins.get(bin_id).items:
                item.verified_quantity = item.quantity
            uow.pick_bins.flush()

        engine.run(verify_everything_without_scanning)

        with pytest.raises(InvalidTransitionError):
            engine.run(lambda uow: uow.bins.complete_bin(bin_id))

    def test_cancel(self, engine, bin_id):
        cancelled = engine.run(lambda uow: uow.bins.cancel_bin(bin_id, "order cancelled"))

        assert PickBinStatus(cancelled.status) == PickBinStatus.CANCELLED
        assert cancelled.cancel_reason == "order cancelled"
        with pytest.raises(InvalidTransitionError):
            engine.run(lambda uow: uow.bins.cancel_bin(bin_id, "again"))
        with pytest.raises(BinClosedError):
            engine.run(lambda uow: uow.bins.verify_bin_item(bin_id, "SKU-A"))

    def test_unknown_bin(self, engine):
        with pytest.raises(PickBinNotFoundError):
            engine.run(lambda uow: uow.bins.stage_bin(uuid4(), "STAGE-1"))
