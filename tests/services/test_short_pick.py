"""
ShortPickService tests.

The escalation policy runs against in-memory repository doubles; one test
runs the full path (short confirmation, then the handler) against SQLite.

Covers:
- One discrepancy per short task item (redelivery safe)
- variance = actual - expected
- Cycle-count flag after N short picks at a location within the window
- An already-flagged location is left untouched
- Non-short items are ignored
"""

from datetime import datetime
from uuid import UUID, uuid4

import pytest

from fulfillment_config import ShortPickSettings
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.events import EventType, InMemoryEventPublisher
from fulfillment_kernel.domain.states import OPEN_TASK_ITEM_STATUSES, TaskItemStatus
from fulfillment_kernel.exceptions import TaskItemNotFoundError
from fulfillment_kernel.models.discrepancy import DiscrepancyType, InventoryDiscrepancy
from fulfillment_kernel.models.inventory import InventoryUnit, Location, ProductVariant
from fulfillment_kernel.models.work_task import TaskItem
from fulfillment_kernel.repositories.interfaces import (
    DiscrepancyRepository,
    InventoryRepository,
    TaskItemRepository,
)
from fulfillment_kernel.services.short_pick_service import ShortPickService


class InMemoryTaskItems(TaskItemRepository):
    def __init__(self):
        self.items: dict[UUID, TaskItem] = {}

    def get(self, item_id, *, for_update=False):
        return self.items.get(item_id)

    def list_for_task(self, task_id):
        return sorted(
            (i for i in self.items.values() if i.task_id == task_id),
            key=lambda i: i.sequence,
        )

    def count_open(self, task_id):
        return sum(
            1
            for i in self.list_for_task(task_id)
            if TaskItemStatus(i.status) in OPEN_TASK_ITEM_STATUSES
        )

    def next_open(self, task_id):
        for item in self.list_for_task(task_id):
            if TaskItemStatus(item.status) in OPEN_TASK_ITEM_STATUSES:
                return item
        return None

    def flush(self):
        pass


class InMemoryInventory(InventoryRepository):
    def __init__(self):
        self.objects: dict[UUID, object] = {}

    def _typed(self, obj_id, kind):
        obj = self.objects.get(obj_id)
        return obj if isinstance(obj, kind) else None

    def get_unit(self, unit_id, *, for_update=False):
        return self._typed(unit_id, InventoryUnit)

    def list_allocatable_units(self, variant_id):
        return []

    def get_location(self, location_id, *, for_update=False):
        return self._typed(location_id, Location)

    def get_variant(self, variant_id):
        return self._typed(variant_id, ProductVariant)

    def find_variant_by_sku(self, sku):
        for obj in self.objects.values():
            if isinstance(obj, ProductVariant) and obj.sku == sku:
                return obj
        return None

    def add(self, obj):
        if obj.id is None:
            obj.id = uuid4()
        self.objects[obj.id] = obj

    def flush(self):
        pass


class InMemoryDiscrepancies(DiscrepancyRepository):
    def __init__(self):
        self.rows: list[InventoryDiscrepancy] = []

    def add(self, discrepancy):
        discrepancy.id = uuid4()
        self.rows.append(discrepancy)

    def get_for_task_item(self, task_item_id):
        for row in self.rows:
            if (
                row.task_item_id == task_item_id
                and row.discrepancy_type == DiscrepancyType.SHORT_PICK
            ):
                return row
        return None

    def count_short_picks_since(self, location_id, since: datetime):
        return sum(
            1
            for row in self.rows
            if row.location_id == location_id
            and row.discrepancy_type == DiscrepancyType.SHORT_PICK
            and row.reported_at >= since
        )

    def flush(self):
        pass


class ShortPickHarness:
    def __init__(self, settings=None):
        self.clock = DeterministicClock()
        self.items = InMemoryTaskItems()
        self.inventory = InMemoryInventory()
        self.discrepancies = InMemoryDiscrepancies()
        self.publisher = InMemoryEventPublisher()
        self.service = ShortPickService(
            self.items,
            self.inventory,
            self.discrepancies,
            self.clock,
            self.publisher,
            settings or ShortPickSettings(),
        )
        self.variant_id = uuid4()

    def location(self, name="A-01"):
        location = Location(id=uuid4(), name=name, zone="A", needs_cycle_count=False)
        self.inventory.add(location)
        return location

    def short_item(self, location, required=5, picked=3, status=TaskItemStatus.SHORT):
        item = TaskItem(
            id=uuid4(),
            task_id=uuid4(),
            sequence=1,
            order_id=uuid4(),
            product_variant_id=self.variant_id,
            location_id=location.id,
            quantity_required=required,
            quantity_completed=picked,
            status=status,
            completed_by="picker-1",
            short_reason=f"Short pick: {picked}/{required}",
        )
        self.items.items[item.id] = item
        return item


@pytest.fixture
def harness():
    return ShortPickHarness()


class TestDiscrepancyRecording:
    def test_records_negative_variance(self, harness):
        location = harness.location()
        item = harness.short_item(location, required=5, picked=3)

        outcome = harness.service.handle_short_pick(item.id)

        assert outcome.discrepancy_created
        assert outcome.shortage == 2
        assert not outcome.cycle_count_flagged
        [row] = harness.discrepancies.rows
        assert row.variance == -2
        assert row.expected_quantity == 5
        assert row.actual_quantity == 3
        assert row.reported_by == "picker-1"
        assert row.notes == "Short pick: 3/5"
        assert outcome.discrepancy_id == row.id

    def test_reporter_overrides_picker(self, harness):
        item = harness.short_item(harness.location())

        harness.service.handle_short_pick(item.id, reported_by="lead-7")

        assert harness.discrepancies.rows[0].reported_by == "lead-7"

    def test_redelivery_returns_existing_discrepancy(self, harness):
        item = harness.short_item(harness.location())

        first = harness.service.handle_short_pick(item.id)
        second = harness.service.handle_short_pick(item.id)

        assert not second.discrepancy_created
        assert second.discrepancy_id == first.discrepancy_id
        assert len(harness.discrepancies.rows) == 1
        assert len(harness.publisher.of_type(EventType.SHORT_PICK_DETECTED)) == 1

    @pytest.mark.parametrize(
        "status", [TaskItemStatus.COMPLETED, TaskItemStatus.PENDING, TaskItemStatus.SKIPPED]
    )
    def test_non_short_items_ignored(self, harness, status):
        item = harness.short_item(harness.location(), status=status)

        outcome = harness.service.handle_short_pick(item.id)

        assert (outcome.discrepancy_created, outcome.cycle_count_flagged, outcome.shortage) == (
            False,
            False,
            0,
        )
        assert harness.discrepancies.rows == []

    def test_unknown_item(self, harness):
        with pytest.raises(TaskItemNotFoundError):
            harness.service.handle_short_pick(uuid4())

    def test_event_published(self, harness):
        location = harness.location("B-07")
        item = harness.short_item(location)

        harness.service.handle_short_pick(item.id)

        [event] = harness.publisher.of_type(EventType.SHORT_PICK_DETECTED)
        assert event.payload["location_name"] == "B-07"
        assert event.payload["shortage"] == 2
        assert event.payload["cycle_count_flagged"] is False


class TestCycleCountEscalation:
    def test_third_short_pick_flags_location(self, harness):
        location = harness.location()

        outcomes = []
        for _ in range(3):
            outcomes.append(harness.service.handle_short_pick(harness.short_item(location).id))
            harness.clock.advance_days(1)

        assert [o.cycle_count_flagged for o in outcomes] == [False, False, True]
        assert outcomes[-1].recent_short_picks == 3
        assert location.needs_cycle_count is True
        assert location.cycle_count_priority == "HIGH"
        assert location.cycle_count_reason == "3 short picks in 7 days"
        assert location.cycle_count_flagged_at is not None

    def test_flagged_location_left_untouched(self, harness):
        location = harness.location()
        for _ in range(3):
            harness.service.handle_short_pick(harness.short_item(location).id)
        flagged_at = location.cycle_count_flagged_at
        harness.clock.advance(60)

        fourth = harness.service.handle_short_pick(harness.short_item(location).id)

        assert fourth.discrepancy_created
        assert not fourth.cycle_count_flagged
        assert fourth.recent_short_picks == 4
        assert location.cycle_count_reason == "3 short picks in 7 days"
        assert location.cycle_count_flagged_at == flagged_at

    def test_old_short_picks_fall_out_of_window(self, harness):
        location = harness.location()
        for _ in range(2):
            harness.service.handle_short_pick(harness.short_item(location).id)
        harness.clock.advance_days(8)

        outcome = harness.service.handle_short_pick(harness.short_item(location).id)

        assert outcome.recent_short_picks == 1
        assert not outcome.cycle_count_flagged
        assert location.needs_cycle_count is False

    def test_counts_are_per_location(self, harness):
        a01, a02 = harness.location("A-01"), harness.location("A-02")
        harness.service.handle_short_pick(harness.short_item(a01).id)
        harness.service.handle_short_pick(harness.short_item(a01).id)

        outcome = harness.service.handle_short_pick(harness.short_item(a02).id)

        assert outcome.recent_short_picks == 1
        assert a02.needs_cycle_count is False

    def test_threshold_and_priority_from_settings(self):
        harness = ShortPickHarness(
            ShortPickSettings(threshold=2, window_days=3, cycle_count_priority="URGENT")
        )
        location = harness.location()
        harness.service.handle_short_pick(harness.short_item(location).id)

        outcome = harness.service.handle_short_pick(harness.short_item(location).id)

        assert outcome.cycle_count_flagged
        assert location.cycle_count_priority == "URGENT"
        assert location.cycle_count_reason == "2 short picks in 3 days"


class TestShortPickAgainstDatabase:
    def test_short_confirmation_then_handler(self, engine, warehouse, start_picking):
        variant = warehouse.variant("SKU-A")
        location = warehouse.location("A-01", pick_sequence=1)
        warehouse.unit(variant, location, 10)
        order = warehouse.order([(variant, 5)])
        task_id = start_picking([order.id])
        item_id = engine.run(lambda uow: uow.work_tasks.get_next_item(task_id).id)
        engine.run(lambda uow: uow.work_tasks.record_item_completion(item_id, "picker-1", 3))

        outcome = engine.run(lambda uow: uow.short_picks.handle_short_pick(item_id))
        again = engine.run(lambda uow: uow.short_picks.handle_short_pick(item_id))

        assert outcome.discrepancy_created
        assert not again.discrepancy_created
        row = engine.run(lambda uow: uow.discrepancies.get_for_task_item(item_id))
        assert row.variance == -2
        assert row.location_id == location.id
        assert row.reported_by == "picker-1"
