import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

from app.core.timeutils import utcnow
from app.models.enums import EntryMethod, EventType

logger = logging.getLogger(__name__)


class SchedulingEvent(BaseModel):
    """Write-only record for analytics collaborators. Never read back by the core."""
    event_type: EventType
    session_id: str
    entry_method: EntryMethod
    timestamp: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)


EventSink = Callable[[SchedulingEvent], None]


def log_sink(event: SchedulingEvent) -> None:
    logger.info("event=%s entry_method=%s payload=%s",
                event.event_type.value, event.entry_method.value, event.payload)


class EventPublisher:
    """
    Fire-and-forget fan-out of scheduling events.

    A failing sink is logged and skipped; publishing never raises into
    the booking flow.
    """

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else [log_sink]

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: EventSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def publish(
        self,
        event_type: EventType,
        session_id: str,
        entry_method: EntryMethod,
        timestamp: datetime | None = None,
        **payload: Any
    ) -> SchedulingEvent:
        event = SchedulingEvent(
            event_type=event_type,
            session_id=session_id,
            entry_method=entry_method,
            timestamp=timestamp or utcnow(),
            payload=payload,
        )
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception:
                logger.exception("Event sink %r failed for %s", sink, event_type.value)
        return event


# Process-wide publisher; integrations subscribe at startup
event_publisher = EventPublisher()
