"""Event sinks. Delivery is fire-and-forget; the core never depends on it."""

import logging
import threading
from typing import Protocol

from mafia.state import Event, EventKind

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def emit(self, event: Event) -> None:
        ...


class MemoryEventSink:
    """Keeps every event in order (tests, the /events route)."""

    def __init__(self) -> None:
        self.events: list[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class LoggingEventSink:
    """Writes events to the log."""

    def emit(self, event: Event) -> None:
        logger.info("[room %s] %s: %s", event.room_id, event.kind.value, event.message)


def emit_event(sink: EventSink | None, event: Event) -> None:
    """Hand event to sink; a failing sink is logged and ignored."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception as e:
        logger.warning("Event sink failed for %s: %s", event.kind.value, e)
