"""Event system module."""

from transcriptflow.core.events.bus import EventBus
from transcriptflow.core.events.types import Event, EventSeverity, EventType

__all__ = [
    "Event",
    "EventType",
    "EventSeverity",
    "EventBus",
]
