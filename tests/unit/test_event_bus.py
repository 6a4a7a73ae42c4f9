"""Unit tests for the event bus."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from transcriptflow.core.events import EventBus, EventSeverity, EventType


@pytest.mark.unit
class TestEventBus:
    """Tests for EventBus subscription and emission."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers_called(self):
        bus = EventBus()
        sync_handler = MagicMock()
        async_handler = AsyncMock()
        bus.subscribe(EventType.TASK_CREATED, sync_handler)
        bus.subscribe("task.created", async_handler)

        event = await bus.emit(EventType.TASK_CREATED, "registry", {"task_id": "t1"})

        sync_handler.assert_called_once_with(event)
        async_handler.assert_awaited_once_with(event)
        assert event.type == "task.created"
        assert event.payload == {"task_id": "t1"}

    @pytest.mark.asyncio
    async def test_handlers_only_receive_their_type(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventType.TASK_DELETED, handler)

        await bus.emit(EventType.TASK_CREATED, "registry", {})

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_wildcard_receives_everything(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe_all(handler)

        await bus.emit(EventType.TASK_CREATED, "registry", {})
        await bus.emit(EventType.TRANSCRIPTION_FAILED, "orchestrator", {}, severity=EventSeverity.ERROR)

        assert handler.call_count == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventType.TASK_UPDATED, handler)
        bus.unsubscribe(EventType.TASK_UPDATED, handler)
        bus.unsubscribe(EventType.TASK_UPDATED, handler)

        await bus.emit(EventType.TASK_UPDATED, "registry", {})

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_error_is_contained(self):
        """A failing handler does not reach the emitter or block other handlers."""
        bus = EventBus()
        failing = MagicMock(side_effect=RuntimeError("listener broke"))
        healthy = MagicMock()
        bus.subscribe(EventType.TASK_STATE_CHANGED, failing)
        bus.subscribe(EventType.TASK_STATE_CHANGED, healthy)

        await bus.emit(EventType.TASK_STATE_CHANGED, "registry", {})

        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_recent_events_newest_first(self):
        bus = EventBus()
        await bus.emit(EventType.TASK_CREATED, "registry", {"n": 1})
        await bus.emit(EventType.TRANSCRIPTION_STARTED, "orchestrator", {"n": 2})

        events = bus.get_recent_events()
        assert [e.payload["n"] for e in events] == [2, 1]

        only_orchestrator = bus.get_recent_events(source_filter="orchestrator")
        assert [e.type for e in only_orchestrator] == ["transcription.started"]

        only_created = bus.get_recent_events(event_types=["task.created"])
        assert len(only_created) == 1

    @pytest.mark.asyncio
    async def test_buffer_is_bounded(self):
        bus = EventBus(buffer_max_size=3)
        for i in range(5):
            await bus.emit(EventType.TASK_UPDATED, "registry", {"n": i})

        assert [e.payload["n"] for e in bus.get_recent_events()] == [4, 3, 2]
