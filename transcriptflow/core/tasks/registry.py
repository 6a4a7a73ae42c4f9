"""
Task registry.

Single writer of task rows and their lifecycle state. Mutations of one task are
serialized by a per-task lock, and every state write is a compare-and-swap on
the stored state so a lost race can never apply twice.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transcriptflow.core.ai.base import TranscriptionResult
from transcriptflow.core.database.base import as_utc, new_id, utcnow
from transcriptflow.core.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)
from transcriptflow.core.events import Event, EventBus, EventType
from transcriptflow.core.logging import get_logger
from transcriptflow.core.tasks.models import AudioFile, StoredTranscription, Task
from transcriptflow.core.tasks.schemas import AudioFileInfo, TaskFilters, TaskInfo, TaskPage
from transcriptflow.core.tasks.states import BUSY_STATES, AudioSource, TaskState, is_valid_transition

logger = get_logger(__name__)

EVENT_SOURCE = "registry"
UPDATABLE_FIELDS = ("title", "description", "metadata")


@dataclass
class _TaskLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _icontains(column, text: str):
    """Case-insensitive substring match; LIKE wildcards in ``text`` match literally."""
    escaped = text.replace("/", "//").replace("%", "/%").replace("_", "/_")
    return column.ilike(f"%{escaped}%", escape="/")


class TaskRegistry:
    """Owns task records and enforces the task state machine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: EventBus | None = None,
    ):
        self._session_factory = session_factory
        self._events = events or EventBus()
        self._locks: dict[str, _TaskLock] = {}

    @property
    def events(self) -> EventBus:
        return self._events

    # === LISTENERS ===

    def subscribe(self, listener: Callable[[Event], Any]) -> None:
        """Register a state-change listener. Listener errors are logged, not raised."""
        self._events.subscribe(EventType.TASK_STATE_CHANGED, listener)

    def unsubscribe(self, listener: Callable[[Event], Any]) -> None:
        self._events.unsubscribe(EventType.TASK_STATE_CHANGED, listener)

    # === CRUD ===

    async def create_task(
        self,
        audio_source: AudioSource | str,
        metadata: dict[str, Any] | None = None,
    ) -> TaskInfo:
        """
        Create a task in PENDING.

        Recognized metadata keys: ``title``, ``description``, ``audio_loc``.
        The whole mapping is kept as the task's metadata.
        """
        audio_source = AudioSource(audio_source)
        metadata = dict(metadata or {})
        now = utcnow()

        task = Task(
            id=new_id(),
            title=metadata.get("title") or self._generate_title(audio_source, now),
            description=metadata.get("description"),
            state=TaskState.PENDING.value,
            audio_source=audio_source.value,
            audio_loc=metadata.get("audio_loc") or None,
            properties=metadata,
            created_at=now,
            updated_at=now,
        )

        async with self._transaction("create task") as session:
            session.add(task)

        info = TaskInfo.from_model(task)
        logger.info("task_created", task_id=info.id, audio_source=audio_source.value)
        await self._events.emit(
            EventType.TASK_CREATED,
            EVENT_SOURCE,
            {"task_id": info.id, "audio_source": audio_source.value, "title": info.title},
        )
        return info

    async def get_task(self, task_id: str) -> TaskInfo | None:
        async with self._transaction("load task", task_id=task_id) as session:
            task = await session.get(Task, task_id)
            return TaskInfo.from_model(task) if task else None

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[TaskInfo]:
        """List tasks matching all given filters, newest first."""
        filters = filters or TaskFilters()
        stmt = self._apply_filters(select(Task), filters)
        stmt = stmt.order_by(Task.created_at.desc(), Task.id.desc()).offset(filters.offset)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)

        async with self._transaction("list tasks") as session:
            tasks = (await session.execute(stmt)).scalars().all()
            return [TaskInfo.from_model(t) for t in tasks]

    async def list_tasks_page(self, filters: TaskFilters | None = None) -> TaskPage:
        """Same as ``list_tasks`` plus the total number of matches."""
        filters = filters or TaskFilters()
        count_stmt = select(func.count()).select_from(
            self._apply_filters(select(Task.id), filters).subquery()
        )

        async with self._transaction("count tasks") as session:
            total = (await session.execute(count_stmt)).scalar_one()

        items = await self.list_tasks(filters)
        return TaskPage(
            items=items,
            total=total,
            limit=filters.limit,
            offset=filters.offset,
            has_more=filters.offset + len(items) < total,
        )

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> TaskInfo:
        """
        Update display fields of a task.

        Only ``title``, ``description`` and ``metadata`` are applied; other keys
        are ignored. Nothing is written, and no event is emitted, unless a
        recognized key differs from the stored value.

        Raises:
            NotFoundError: Task does not exist
        """
        requested = {key: updates[key] for key in UPDATABLE_FIELDS if key in updates}
        if "metadata" in requested:
            requested["metadata"] = dict(requested["metadata"] or {})

        async with self._locked(task_id):
            async with self._transaction("update task", task_id=task_id) as session:
                task = await self._get_or_raise(session, task_id)
                current = {
                    "title": task.title,
                    "description": task.description,
                    "metadata": dict(task.properties or {}),
                }
                changes = {key: value for key, value in requested.items() if current[key] != value}
                if changes:
                    if "title" in changes:
                        task.title = changes["title"]
                    if "description" in changes:
                        task.description = changes["description"]
                    if "metadata" in changes:
                        task.properties = changes["metadata"]
                    task.updated_at = utcnow()
                    await session.flush()
                info = TaskInfo.from_model(task)

        if changes:
            logger.info("task_updated", task_id=task_id, fields=sorted(changes))
            await self._events.emit(
                EventType.TASK_UPDATED,
                EVENT_SOURCE,
                {"task_id": task_id, "fields": sorted(changes)},
            )
        return info

    async def delete_task(self, task_id: str) -> None:
        """
        Delete a task with its audio files and transcription results.

        Raises:
            NotFoundError: Task does not exist
            InvalidStateError: Task is RECORDING or IN_TRANSCRIB
        """
        async with self._locked(task_id):
            async with self._transaction("delete task", task_id=task_id) as session:
                task = await self._get_or_raise(session, task_id)
                state = TaskState(task.state)
                if state in BUSY_STATES:
                    raise InvalidStateError(
                        f"Cannot delete task {task_id} while {state.value}",
                        task_id=task_id,
                        state=state.value,
                    )

                await session.execute(delete(AudioFile).where(AudioFile.task_id == task_id))
                await session.execute(
                    delete(StoredTranscription).where(StoredTranscription.task_id == task_id)
                )
                result = await session.execute(
                    delete(Task)
                    .where(Task.id == task_id, Task.state == state.value)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidStateError(
                        f"Task {task_id} changed state during delete", task_id=task_id
                    )
                session.expunge(task)

        logger.info("task_deleted", task_id=task_id)
        await self._events.emit(EventType.TASK_DELETED, EVENT_SOURCE, {"task_id": task_id})

    # === STATE MACHINE ===

    async def transition_state(self, task_id: str, new_state: TaskState | str) -> TaskInfo:
        """
        Move a task to ``new_state``.

        Raises:
            NotFoundError: Task does not exist
            InvalidTransitionError: ``new_state`` is not reachable from the current state
            InvalidStateError: Entering IN_TRANSCRIB without an audio location
        """
        async with self._locked(task_id):
            async with self._transaction("transition task state", task_id=task_id) as session:
                task = await self._get_or_raise(session, task_id)
                old_state = TaskState(task.state)
                target = self._check_transition(task, old_state, new_state)
                await self._swap_state(session, task, old_state, target)
                info = TaskInfo.from_model(task)

        await self._notify_state_change(task_id, old_state, target)
        return info

    async def complete_transcription(self, task_id: str, result: TranscriptionResult) -> TaskInfo:
        """
        Store ``result`` as the task's current transcription and move it to COMPLETED.

        Raises:
            NotFoundError: Task does not exist
            InvalidStateError: Task is not IN_TRANSCRIB
        """
        async with self._locked(task_id):
            async with self._transaction("store transcription", task_id=task_id) as session:
                task = await self._get_or_raise(session, task_id)
                old_state = TaskState(task.state)
                if old_state is not TaskState.IN_TRANSCRIB:
                    raise InvalidStateError(
                        f"Task {task_id} is {old_state.value}, expected {TaskState.IN_TRANSCRIB.value}",
                        task_id=task_id,
                        state=old_state.value,
                    )

                # Re-transcription replaces the current result
                await session.execute(
                    delete(StoredTranscription).where(StoredTranscription.task_id == task_id)
                )
                session.add(
                    StoredTranscription(
                        id=result.result_id,
                        task_id=task_id,
                        format=result.format,
                        model=result.model,
                        language=result.language,
                        confidence=result.confidence,
                        processing_time=result.processing_time,
                        word_count=result.word_count,
                        text=result.text,
                        segments=[s.model_dump() for s in result.segments],
                        api_response=result.api_response,
                        created_at=result.created_at,
                        updated_at=result.updated_at,
                    )
                )
                await session.flush()
                await self._swap_state(
                    session,
                    task,
                    old_state,
                    TaskState.COMPLETED,
                    transcription_loc=result.result_id,
                )
                info = TaskInfo.from_model(task)

        logger.info("transcription_stored", task_id=task_id, result_id=result.result_id)
        await self._notify_state_change(task_id, old_state, TaskState.COMPLETED)
        return info

    # === SEARCH ===

    async def search_tasks(self, query: str) -> list[TaskInfo]:
        """Substring search over title, description, audio file name and transcription model."""
        matching_ids = (
            select(Task.id)
            .outerjoin(AudioFile, AudioFile.task_id == Task.id)
            .outerjoin(StoredTranscription, StoredTranscription.task_id == Task.id)
            .where(
                or_(
                    _icontains(Task.title, query),
                    _icontains(Task.description, query),
                    _icontains(AudioFile.file_name, query),
                    _icontains(StoredTranscription.model, query),
                )
            )
        )
        stmt = (
            select(Task)
            .where(Task.id.in_(matching_ids))
            .order_by(Task.created_at.desc(), Task.id.desc())
        )

        async with self._transaction("search tasks") as session:
            tasks = (await session.execute(stmt)).scalars().all()

        logger.debug("tasks_searched", query=query, count=len(tasks))
        return [TaskInfo.from_model(t) for t in tasks]

    # === AUDIO FILES ===

    async def attach_audio_file(
        self,
        task_id: str,
        file_path: str | Path,
        *,
        file_name: str | None = None,
        file_size: int | None = None,
        duration: float | None = None,
        format: str | None = None,
        sample_rate: int | None = None,
        channels: int | None = None,
        bit_rate: int | None = None,
    ) -> AudioFileInfo:
        """
        Record the audio artifact of a task and point ``audio_loc`` at it.

        Raises:
            NotFoundError: Task does not exist
            InvalidStateError: Task is IN_TRANSCRIB
        """
        path = Path(file_path)

        async with self._locked(task_id):
            async with self._transaction("attach audio file", task_id=task_id) as session:
                task = await self._get_or_raise(session, task_id)
                if task.state == TaskState.IN_TRANSCRIB.value:
                    raise InvalidStateError(
                        f"Cannot replace audio of task {task_id} while transcribing",
                        task_id=task_id,
                    )

                audio_file = AudioFile(
                    id=new_id(),
                    task_id=task_id,
                    file_name=file_name or path.name,
                    file_path=str(path),
                    file_size=file_size,
                    duration=duration,
                    format=format or path.suffix.lstrip(".").lower() or None,
                    sample_rate=sample_rate,
                    channels=channels,
                    bit_rate=bit_rate,
                )
                session.add(audio_file)
                task.audio_loc = str(path)
                task.updated_at = utcnow()
                await session.flush()
                info = AudioFileInfo.from_model(audio_file)

        logger.info("audio_file_attached", task_id=task_id, file_name=info.file_name)
        await self._events.emit(
            EventType.TASK_UPDATED,
            EVENT_SOURCE,
            {"task_id": task_id, "fields": ["audio_loc"]},
        )
        return info

    async def get_audio_files(self, task_id: str) -> list[AudioFileInfo]:
        async with self._transaction("load audio files", task_id=task_id) as session:
            rows = (
                await session.execute(
                    select(AudioFile)
                    .where(AudioFile.task_id == task_id)
                    .order_by(AudioFile.created_at)
                )
            ).scalars().all()
            return [AudioFileInfo.from_model(a) for a in rows]

    # === RESULTS ===

    async def get_transcription_result(self, task_id: str) -> TranscriptionResult:
        """
        Load the task's current transcription.

        Raises:
            NotFoundError: Task, its result location or the stored result is missing
        """
        async with self._transaction("load transcription", task_id=task_id) as session:
            task = await self._get_or_raise(session, task_id)
            if not task.transcription_loc:
                raise NotFoundError(f"Task {task_id} has no transcription result", task_id=task_id)

            row = await session.get(StoredTranscription, task.transcription_loc)
            if row is None:
                raise NotFoundError(
                    f"Transcription result {task.transcription_loc} not found",
                    task_id=task_id,
                )

            return TranscriptionResult(
                result_id=row.id,
                task_id=row.task_id,
                format=row.format,
                model=row.model or "",
                language=row.language,
                confidence=row.confidence,
                processing_time=row.processing_time or 0.0,
                word_count=row.word_count,
                text=row.text,
                segments=row.segments or [],
                api_response=row.api_response,
                created_at=as_utc(row.created_at),
                updated_at=as_utc(row.updated_at),
            )

    # === INTERNALS ===

    @asynccontextmanager
    async def _locked(self, task_id: str) -> AsyncIterator[None]:
        """Hold the per-task lock; the entry is dropped once no caller uses it."""
        entry = self._locks.get(task_id)
        if entry is None:
            entry = self._locks[task_id] = _TaskLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(task_id) is entry:
                del self._locks[task_id]

    @asynccontextmanager
    async def _transaction(self, action: str, **context: Any) -> AsyncIterator[AsyncSession]:
        """Session with a transaction; store failures surface as StorageError."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("task_storage_failed", action=action, error=str(e), **context)
            raise StorageError(f"Failed to {action}: {e}", **context) from e

    @staticmethod
    async def _get_or_raise(session: AsyncSession, task_id: str) -> Task:
        task = await session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        return task

    @staticmethod
    def _check_transition(task: Task, old_state: TaskState, new_state: TaskState | str) -> TaskState:
        try:
            target = TaskState(new_state)
        except ValueError:
            raise InvalidTransitionError(task.id, old_state, new_state) from None

        if not is_valid_transition(old_state, target):
            raise InvalidTransitionError(task.id, old_state, target)

        if target is TaskState.IN_TRANSCRIB and not task.audio_loc:
            raise InvalidStateError(
                f"Task {task.id} has no audio to transcribe",
                task_id=task.id,
            )
        return target

    @staticmethod
    async def _swap_state(
        session: AsyncSession,
        task: Task,
        old_state: TaskState,
        new_state: TaskState,
        **values: Any,
    ) -> None:
        """Write ``new_state`` only if the stored state is still ``old_state``."""
        result = await session.execute(
            update(Task)
            .where(Task.id == task.id, Task.state == old_state.value)
            .values(state=new_state.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(task.id, old_state, new_state)
        await session.refresh(task)

    async def _notify_state_change(self, task_id: str, old_state: TaskState, new_state: TaskState) -> None:
        logger.info(
            "task_state_changed",
            task_id=task_id,
            old_state=old_state.value,
            new_state=new_state.value,
        )
        await self._events.emit(
            EventType.TASK_STATE_CHANGED,
            EVENT_SOURCE,
            {"task_id": task_id, "old_state": old_state.value, "new_state": new_state.value},
        )

    @staticmethod
    def _apply_filters(stmt: Select, filters: TaskFilters) -> Select:
        if filters.state is not None:
            stmt = stmt.where(Task.state == filters.state.value)
        if filters.audio_source is not None:
            stmt = stmt.where(Task.audio_source == filters.audio_source.value)
        if filters.start_date is not None:
            stmt = stmt.where(Task.created_at >= as_utc(filters.start_date))
        if filters.end_date is not None:
            stmt = stmt.where(Task.created_at <= as_utc(filters.end_date))
        if filters.search_query:
            stmt = stmt.where(
                or_(
                    _icontains(Task.title, filters.search_query),
                    _icontains(Task.description, filters.search_query),
                )
            )
        return stmt

    @staticmethod
    def _generate_title(audio_source: AudioSource, created_at: datetime) -> str:
        prefix = "Recording" if audio_source is AudioSource.RECORD else "Import"
        return f"{prefix} - {created_at:%Y-%m-%d %H:%M}"
