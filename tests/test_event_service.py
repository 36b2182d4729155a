"""Tests for scheduling event fan-out."""

from app.models.enums import EntryMethod, EventType
from app.services.event_service import EventPublisher


class TestEventPublisher:
    def test_delivers_to_every_sink(self):
        first, second = [], []
        publisher = EventPublisher(sinks=[first.append, second.append])

        publisher.publish(EventType.SESSION_STARTED, "s-1", EntryMethod.FORM, practitioner_id="p-1")

        assert len(first) == len(second) == 1
        event = first[0]
        assert event.event_type == EventType.SESSION_STARTED
        assert event.entry_method == EntryMethod.FORM
        assert event.payload == {"practitioner_id": "p-1"}

    def test_failing_sink_does_not_block_others(self):
        received = []

        def broken(event):
            raise RuntimeError("analytics down")

        publisher = EventPublisher(sinks=[broken, received.append])
        publisher.publish(EventType.BOOKING_CONFLICT, "s-1", EntryMethod.CHAT)

        assert len(received) == 1

    def test_unsubscribe(self):
        received = []
        publisher = EventPublisher(sinks=[])
        publisher.subscribe(received.append)
        publisher.unsubscribe(received.append)

        publisher.publish(EventType.SESSION_EXPIRED, "s-1", EntryMethod.CHAT)
        assert received == []
