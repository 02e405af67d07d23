from __future__ import annotations

import logging
from typing import Any, Protocol

from .models import GateEvent

logger = logging.getLogger(__name__)

GATE_READY = "gate:ready"
GATE_APPROVED = "gate:approved"
GATE_REJECTED = "gate:rejected"
G6_TEST_FAILURE = "g6:test_failure"


class NotificationSink(Protocol):
    def emit(self, event: GateEvent) -> None: ...


class LoggingNotificationSink:
    """Sink that writes every event to the module logger."""

    def emit(self, event: GateEvent) -> None:
        logger.info("event=%s project=%s payload=%s", event.name, event.project_id, event.payload)


class RecordingNotificationSink:
    """Sink that keeps emitted events in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[GateEvent] = []

    def emit(self, event: GateEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[GateEvent]:
        return [event for event in self.events if event.name == name]


def emit_event(sink: NotificationSink, name: str, project_id: str, **payload: Any) -> GateEvent:
    event = GateEvent(name=name, project_id=project_id, payload=payload)
    try:
        sink.emit(event)
    except Exception:  # noqa: BLE001
        logger.exception("Notification sink failed for %s on project %s", name, project_id)
    return event
