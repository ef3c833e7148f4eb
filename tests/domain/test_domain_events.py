"""Domain event construction and publisher tests."""

from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.events import (
    BufferedEventPublisher,
    EventPublisher,
    EventType,
    InMemoryEventPublisher,
    LoggingEventPublisher,
    make_event,
)
from fulfillment_kernel.logging_config import LogContext


class TestMakeEvent:
    def test_stamped_by_clock(self):
        clock = DeterministicClock()
        event = make_event(clock, EventType.TASK_CREATED, task_id="t-1")
        assert event.occurred_at == clock.now()
        assert event.payload == {"task_id": "t-1"}

    def test_carries_bound_correlation_id(self):
        clock = DeterministicClock()
        with LogContext.bind(correlation_id="req-42"):
            event = make_event(clock, EventType.ITEM_SHORT)
        assert event.correlation_id == "req-42"
        assert make_event(clock, EventType.ITEM_SHORT).correlation_id is None

    def test_wire_shape(self):
        clock = DeterministicClock()
        event = make_event(clock, EventType.PICKBIN_CREATED, bin_number="BIN-000001")
        wire = event.to_dict()
        assert wire["type"] == "PICKBIN_CREATED"
        assert wire["payload"] == {"bin_number": "BIN-000001"}
        assert wire["timestamp"] == "2026-01-01T12:00:00+00:00"
        assert wire["id"] == str(event.event_id)
        assert "correlationId" in wire


class TestInMemoryEventPublisher:
    def test_records_and_fans_out(self):
        publisher = InMemoryEventPublisher()
        seen = []
        publisher.subscribe(seen.append)
        event = make_event(DeterministicClock(), EventType.TASK_STARTED)
        publisher.publish(event)
        assert publisher.events == [event]
        assert seen == [event]

    def test_of_type_filters(self):
        publisher = InMemoryEventPublisher()
        clock = DeterministicClock()
        publisher.publish(make_event(clock, EventType.TASK_STARTED))
        publisher.publish(make_event(clock, EventType.ITEM_SHORT))
        assert len(publisher.of_type(EventType.ITEM_SHORT)) == 1
        publisher.clear()
        assert publisher.events == []

    def test_publishers_satisfy_protocol(self):
        assert isinstance(InMemoryEventPublisher(), EventPublisher)
        assert isinstance(LoggingEventPublisher(), EventPublisher)
        assert isinstance(BufferedEventPublisher(), EventPublisher)


class TestLoggingEventPublisher:
    def test_logs_event(self, captured_logs):
        LoggingEventPublisher().publish(
            make_event(DeterministicClock(), EventType.TASK_COMPLETED, task_number="PIC-1")
        )
        records = [r for r in captured_logs() if r["message"] == "domain_event_published"]
        assert records[0]["event_type"] == "TASK_COMPLETED"
        assert records[0]["payload"] == {"task_number": "PIC-1"}


class TestBufferedEventPublisher:
    def _events(self, n):
        clock = DeterministicClock()
        return [make_event(clock, EventType.ITEM_COMPLETED, n=i) for i in range(n)]

    def test_flush_forwards_in_order_and_empties(self):
        buffer = BufferedEventPublisher()
        target = InMemoryEventPublisher()
        events = self._events(3)
        for event in events:
            buffer.publish(event)
        assert target.events == []

        assert buffer.flush_to(target) == 3
        assert target.events == events
        assert buffer.pending == ()

    def test_discard_drops_everything(self):
        buffer = BufferedEventPublisher()
        for event in self._events(2):
            buffer.publish(event)
        assert buffer.discard() == 2
        assert buffer.pending == ()

    def test_discard_since_checkpoint_keeps_earlier_events(self):
        buffer = BufferedEventPublisher()
        first, second, third = self._events(3)
        buffer.publish(first)
        mark = buffer.checkpoint()
        buffer.publish(second)
        buffer.publish(third)

        assert buffer.discard_since(mark) == 2
        assert buffer.pending == (first,)

    def test_discard_since_current_position_is_noop(self):
        buffer = BufferedEventPublisher()
        buffer.publish(self._events(1)[0])
        assert buffer.discard_since(buffer.checkpoint()) == 0
        assert len(buffer.pending) == 1
