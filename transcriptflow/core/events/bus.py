"""In-process event bus for task and transcription notifications."""

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from transcriptflow.core.events.types import Event, EventSeverity, EventType
from transcriptflow.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Event], Any]

WILDCARD = "*"


def _key(event_type: str | EventType) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


class EventBus:
    """
    Delivers events to handlers registered on this instance.

    Each registry/orchestrator pair shares one bus passed in by the caller;
    there is no process-wide bus. Handlers may be plain functions or
    coroutine functions and run in registration order, type-specific first,
    then wildcard. A failing handler is logged and skipped.

    Recent events stay in a bounded buffer (size and age) for inspection.
    """

    def __init__(self, buffer_max_size: int = 1000, buffer_max_age: timedelta = timedelta(minutes=15)):
        self._handlers: dict[str, list[Handler]] = {}
        self._recent: deque[Event] = deque(maxlen=buffer_max_size)
        self._max_age = buffer_max_age

    def subscribe(self, event_type: str | EventType, handler: Handler) -> None:
        self._handlers.setdefault(_key(event_type), []).append(handler)
        logger.debug("event_handler_subscribed", event_type=_key(event_type))

    def unsubscribe(self, event_type: str | EventType, handler: Handler) -> None:
        """Remove ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(_key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self.subscribe(WILDCARD, handler)

    def unsubscribe_all(self, handler: Handler) -> None:
        self.unsubscribe(WILDCARD, handler)

    async def emit(
        self,
        event_type: str | EventType,
        source: str,
        payload: dict[str, Any],
        severity: EventSeverity = EventSeverity.INFO,
    ) -> Event:
        """Build the event, deliver it to every matching handler and record it."""
        event = Event(type=_key(event_type), source=source, payload=payload, severity=severity)

        for handler in self._matching(event.type):
            await self._deliver(handler, event)

        self._remember(event)
        logger.debug("event_emitted", event_type=event.type, source=source, event_id=str(event.id))
        return event

    def get_recent_events(
        self,
        minutes: int = 5,
        event_types: Iterable[str] | None = None,
        source_filter: str | None = None,
    ) -> list[Event]:
        """Buffered events from the last ``minutes``, newest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        wanted = set(event_types) if event_types else None

        return [
            event
            for event in reversed(self._recent)
            if event.timestamp > cutoff
            and (wanted is None or event.type in wanted)
            and (not source_filter or source_filter in event.source)
        ]

    def _matching(self, event_type: str) -> list[Handler]:
        # Copy so handlers may (un)subscribe during delivery
        return [*self._handlers.get(event_type, ()), *self._handlers.get(WILDCARD, ())]

    @staticmethod
    async def _deliver(handler: Handler, event: Event) -> None:
        try:
            outcome = handler(event)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as e:
            logger.error(
                "event_handler_error",
                event_type=event.type,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(e),
            )

    def _remember(self, event: Event) -> None:
        self._recent.append(event)
        cutoff = datetime.now(timezone.utc) - self._max_age
        while self._recent and self._recent[0].timestamp <= cutoff:
            self._recent.popleft()
