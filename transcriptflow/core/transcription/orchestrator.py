"""
Transcription orchestrator.

Drives tasks from SAVED to COMPLETED or FAILED. Each attempt runs as its own
asyncio task; the backend call holds no registry lock or database session, and
the terminal write goes through the registry's compare-and-swap. Results or
errors from an attempt that was cancelled or superseded are dropped.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from transcriptflow.config import get_settings
from transcriptflow.core.ai.base import TranscriptionBackend, TranscriptionOptions, TranscriptionResult
from transcriptflow.core.ai.factory import create_backend, parse_backend_type
from transcriptflow.core.backends.provider import ConfigProvider
from transcriptflow.core.backends.schemas import BackendType
from transcriptflow.core.database.base import new_id, utcnow
from transcriptflow.core.errors import (
    BackendUnavailableError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    TranscriptFlowError,
)
from transcriptflow.core.events import Event, EventBus, EventSeverity, EventType
from transcriptflow.core.export.formatter import ExportFormat, parse_export_format, write_export
from transcriptflow.core.logging import attempt_log_context, get_logger
from transcriptflow.core.tasks.registry import TaskRegistry
from transcriptflow.core.tasks.states import TaskState
from transcriptflow.core.transcription.status import (
    AttemptStatus,
    TranscriptionStatus,
    TranscriptionStatusStore,
)

logger = get_logger(__name__)

EVENT_SOURCE = "orchestrator"


@dataclass
class _Attempt:
    """Bookkeeping for one attempt of one task."""

    task_id: str
    attempt_id: str = field(default_factory=new_id)
    cancelled: bool = False
    done: asyncio.Event = field(default_factory=asyncio.Event)
    runner: asyncio.Task | None = None  # None until the task is IN_TRANSCRIB

    @property
    def in_flight(self) -> bool:
        return not self.cancelled and not self.done.is_set()


class TranscriptionOrchestrator:
    """
    Runs transcription attempts against the configured backend.

    Usage:
        orchestrator = TranscriptionOrchestrator(registry)
        await orchestrator.configure_backend(ConfigProvider(session_factory))
        await orchestrator.start_transcription(task_id)
        status = await orchestrator.wait_for_completion(task_id)
    """

    def __init__(
        self,
        registry: TaskRegistry,
        backend: TranscriptionBackend | None = None,
        status_store: TranscriptionStatusStore | None = None,
        events: EventBus | None = None,
        exports_dir: str | Path | None = None,
    ):
        self._registry = registry
        self._backend = backend
        self._owns_backend = False
        self._statuses = status_store or TranscriptionStatusStore()
        self._events = events or registry.events
        self._exports_dir = Path(exports_dir or get_settings().exports_dir)
        # Unfinished attempts only; entries are dropped when their runner ends
        self._attempts: dict[str, _Attempt] = {}
        registry.events.subscribe(EventType.TASK_DELETED, self._forget_task)

    # === BACKEND ===

    @property
    def backend(self) -> TranscriptionBackend | None:
        return self._backend

    def set_backend(self, backend: TranscriptionBackend | None) -> None:
        """Use ``backend`` for attempts started from now on."""
        self._backend = backend
        self._owns_backend = False

    async def configure_backend(
        self,
        config_provider: ConfigProvider,
        backend_type: BackendType | str | None = None,
    ) -> TranscriptionBackend | None:
        """
        Build the backend from the active configuration.

        Without an active configuration the orchestrator is left with no
        backend and ``start_transcription`` raises BackendUnavailableError.
        """
        backend_type = parse_backend_type(backend_type or get_settings().transcription_backend)
        config = await config_provider.get_active_backend_config(backend_type)

        await self._close_owned_backend()
        if config is None:
            logger.warning("transcription_backend_not_configured", backend_type=backend_type.value)
            self._backend = None
            return None

        self._backend = create_backend(config)
        self._owns_backend = True
        logger.info("transcription_backend_configured", backend=self._backend.name, model=config.model)
        return self._backend

    # === ATTEMPTS ===

    async def start_transcription(
        self,
        task_id: str,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionStatus:
        """
        Start an attempt and return once it is registered.

        A stop that arrives before the runner is spawned wins; the cancelled
        status is returned and the backend is never called.

        Raises:
            NotFoundError: Task does not exist
            InvalidStateError: Task is not SAVED or has no audio
            BackendUnavailableError: No backend is configured
        """
        task = await self._registry.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)

        if task.state is not TaskState.SAVED:
            raise InvalidStateError(
                f"Task {task_id} is {task.state.value}, expected {TaskState.SAVED.value}",
                task_id=task_id,
                state=task.state.value,
            )

        backend = self._backend
        if backend is None:
            raise BackendUnavailableError("No transcription backend configured", task_id=task_id)

        current = self._attempts.get(task_id)
        if current is not None and current.in_flight:
            raise InvalidStateError(f"Task {task_id} already has an attempt in progress", task_id=task_id)

        # Registered before the transition so a concurrent stop can cancel it
        attempt = _Attempt(task_id=task_id)
        previous_status = self._statuses.get(task_id)
        self._attempts[task_id] = attempt
        status = TranscriptionStatus(
            task_id=task_id,
            status=AttemptStatus.TRANSCRIBING,
            progress=0,
            start_time=utcnow(),
        )
        self._statuses.put(status)

        try:
            task = await self._registry.transition_state(task_id, TaskState.IN_TRANSCRIB)
        except TranscriptFlowError as e:
            self._abandon(attempt, previous_status)
            if isinstance(e, InvalidTransitionError):
                # Another caller moved the task first
                raise InvalidStateError(
                    f"Task {task_id} is no longer {TaskState.SAVED.value}",
                    task_id=task_id,
                    state=e.details["from_state"],
                ) from e
            raise

        if attempt.cancelled:
            logger.info("transcription_stopped_before_start", task_id=task_id, attempt_id=attempt.attempt_id)
            self._finish(attempt)
            return self._statuses.get(task_id)

        attempt.runner = asyncio.create_task(
            self._run_attempt(attempt, backend, task.audio_loc, options or TranscriptionOptions()),
            name=f"transcription-{task_id}",
        )
        attempt.runner.add_done_callback(lambda _: self._finish(attempt))

        logger.info(
            "transcription_started",
            task_id=task_id,
            attempt_id=attempt.attempt_id,
            backend=backend.name,
        )
        await self._events.emit(
            EventType.TRANSCRIPTION_STARTED,
            EVENT_SOURCE,
            {"task_id": task_id, "attempt_id": attempt.attempt_id, "backend": backend.name},
        )
        return status

    async def stop_transcription(self, task_id: str) -> TranscriptionStatus:
        """
        Cancel the in-flight attempt, if any, and force the task to FAILED.

        Cancellation is cooperative: the backend call is interrupted at its next
        await, and anything it returns afterwards is discarded.

        Raises:
            NotFoundError: Task does not exist
        """
        task = await self._registry.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)

        attempt = self._attempts.get(task_id)
        in_flight = attempt is not None and attempt.in_flight
        if in_flight:
            attempt.cancelled = True
            self._statuses.update(task_id, status=AttemptStatus.CANCELLED, end_time=utcnow())
            if attempt.runner is not None:
                attempt.runner.cancel()
            logger.info("transcription_cancelled", task_id=task_id, attempt_id=attempt.attempt_id)

        if task.state is not TaskState.FAILED:
            try:
                await self._registry.transition_state(task_id, TaskState.FAILED)
            except InvalidTransitionError:
                # Moved to FAILED concurrently
                logger.debug("transcription_stop_already_failed", task_id=task_id)

        if in_flight:
            await self._events.emit(
                EventType.TRANSCRIPTION_CANCELLED,
                EVENT_SOURCE,
                {"task_id": task_id, "attempt_id": attempt.attempt_id},
                severity=EventSeverity.WARNING,
            )
        return self._statuses.get(task_id)

    def get_transcription_status(self, task_id: str) -> TranscriptionStatus:
        """Status of the latest attempt; ``not_found`` when none is tracked."""
        return self._statuses.get(task_id)

    def get_transcription_progress(self, task_id: str) -> int:
        return self._statuses.get(task_id).progress

    async def get_transcription_result(self, task_id: str) -> TranscriptionResult:
        return await self._registry.get_transcription_result(task_id)

    async def wait_for_completion(self, task_id: str, timeout: float | None = None) -> TranscriptionStatus:
        """
        Wait until the task's latest attempt has finished.

        Raises:
            TimeoutError: Attempt still running after ``timeout`` seconds
        """
        attempt = self._attempts.get(task_id)
        if attempt is not None:
            await asyncio.wait_for(attempt.done.wait(), timeout=timeout)
        return self._statuses.get(task_id)

    async def batch_transcribe(
        self,
        task_ids: list[str],
        options: TranscriptionOptions | None = None,
    ) -> dict[str, TranscriptionStatus]:
        """
        Transcribe tasks one after another.

        Each attempt runs to a terminal status before the next starts. A task
        that fails to start or fails to transcribe does not stop the batch.

        Returns:
            Final status per task id
        """
        logger.info("batch_transcription_started", task_count=len(task_ids))
        results: dict[str, TranscriptionStatus] = {}

        for task_id in task_ids:
            try:
                await self.start_transcription(task_id, options)
            except TranscriptFlowError as e:
                logger.error("batch_transcription_start_failed", task_id=task_id, error=e.message)
                results[task_id] = TranscriptionStatus(
                    task_id=task_id,
                    status=AttemptStatus.FAILED,
                    error=e.message,
                    end_time=utcnow(),
                )
                continue

            status = await self.wait_for_completion(task_id)
            if status.status is not AttemptStatus.COMPLETED:
                logger.warning(
                    "batch_transcription_task_failed",
                    task_id=task_id,
                    status=status.status.value,
                    error=status.error,
                )
            results[task_id] = status

        completed = sum(1 for s in results.values() if s.status is AttemptStatus.COMPLETED)
        logger.info(
            "batch_transcription_finished",
            task_count=len(task_ids),
            completed=completed,
            failed=len(results) - completed,
        )
        return results

    # === EXPORT ===

    async def export_transcription(self, task_id: str, export_format: ExportFormat | str) -> Path:
        """
        Write the task's transcription to a new file in the exports directory.

        Raises:
            UnsupportedFormatError: Unknown export format
            NotFoundError: Task has no transcription
        """
        export_format = parse_export_format(export_format)
        result = await self._registry.get_transcription_result(task_id)
        return write_export(result, export_format, self._exports_dir)

    # === SHUTDOWN ===

    async def shutdown(self, timeout: float | None = None) -> None:
        """Cancel in-flight attempts, wait for them, then release the backend."""
        timeout = timeout if timeout is not None else get_settings().shutdown_timeout_seconds
        in_flight = [a for a in self._attempts.values() if not a.done.is_set()]
        logger.info("orchestrator_shutdown_started", in_flight=len(in_flight), timeout_seconds=timeout)

        for attempt in in_flight:
            try:
                await self.stop_transcription(attempt.task_id)
            except TranscriptFlowError as e:
                logger.error("orchestrator_shutdown_stop_failed", task_id=attempt.task_id, error=e.message)

        runners = [a.runner for a in in_flight if a.runner is not None]
        if runners:
            _, pending = await asyncio.wait(runners, timeout=timeout)
            if pending:
                logger.warning("orchestrator_shutdown_timeout", pending=len(pending))

        self._registry.events.unsubscribe(EventType.TASK_DELETED, self._forget_task)
        await self._close_owned_backend()
        logger.info("orchestrator_shutdown_complete")

    # === INTERNALS ===

    async def _run_attempt(
        self,
        attempt: _Attempt,
        backend: TranscriptionBackend,
        audio_loc: str | None,
        options: TranscriptionOptions,
    ) -> None:
        task_id = attempt.task_id
        started = time.monotonic()

        with attempt_log_context(task_id, attempt.attempt_id):
            try:
                self._set_status(attempt, progress=10)
                if not audio_loc:
                    raise NotFoundError(f"Task {task_id} has no audio file", task_id=task_id)

                result = await backend.transcribe(audio_loc, options)

                if not self._is_current(attempt):
                    logger.info("transcription_result_discarded")
                    return

                self._set_status(attempt, progress=90)
                result = result.model_copy(
                    update={"task_id": task_id, "processing_time": time.monotonic() - started}
                )
                await self._registry.complete_transcription(task_id, result)

                self._set_status(attempt, status=AttemptStatus.COMPLETED, progress=100, end_time=utcnow())
                logger.info(
                    "transcription_completed",
                    result_id=result.result_id,
                    word_count=result.word_count,
                    processing_time=result.processing_time,
                )
                await self._events.emit(
                    EventType.TRANSCRIPTION_COMPLETED,
                    EVENT_SOURCE,
                    {"task_id": task_id, "result_id": result.result_id, "word_count": result.word_count},
                    severity=EventSeverity.SUCCESS,
                )
            except asyncio.CancelledError:
                logger.debug("transcription_attempt_interrupted")
                raise
            except Exception as e:
                if not self._is_current(attempt):
                    logger.info("transcription_error_discarded", error=str(e))
                    return
                await self._fail_attempt(attempt, e)

    async def _fail_attempt(self, attempt: _Attempt, error: Exception) -> None:
        task_id = attempt.task_id
        message = str(error) or error.__class__.__name__
        logger.error(
            "transcription_failed",
            task_id=task_id,
            attempt_id=attempt.attempt_id,
            error=message,
            error_type=error.__class__.__name__,
        )

        try:
            await self._registry.transition_state(task_id, TaskState.FAILED)
        except TranscriptFlowError as e:
            logger.warning("transcription_fail_transition_skipped", task_id=task_id, error=e.message)

        self._set_status(attempt, status=AttemptStatus.FAILED, error=message, end_time=utcnow())
        await self._events.emit(
            EventType.TRANSCRIPTION_FAILED,
            EVENT_SOURCE,
            {"task_id": task_id, "error": message},
            severity=EventSeverity.ERROR,
        )

    def _finish(self, attempt: _Attempt) -> None:
        attempt.done.set()
        if self._attempts.get(attempt.task_id) is attempt:
            del self._attempts[attempt.task_id]

    def _abandon(self, attempt: _Attempt, previous_status: TranscriptionStatus) -> None:
        """Undo the registration of an attempt whose transition failed."""
        if not attempt.cancelled and self._attempts.get(attempt.task_id) is attempt:
            if previous_status.status is AttemptStatus.NOT_FOUND:
                self._statuses.remove(attempt.task_id)
            else:
                self._statuses.put(previous_status)
        self._finish(attempt)

    def _forget_task(self, event: Event) -> None:
        task_id = event.payload["task_id"]
        attempt = self._attempts.pop(task_id, None)
        if attempt is not None:
            attempt.cancelled = True
            if attempt.runner is not None:
                attempt.runner.cancel()
            attempt.done.set()
        self._statuses.remove(task_id)

    def _is_current(self, attempt: _Attempt) -> bool:
        return not attempt.cancelled and self._attempts.get(attempt.task_id) is attempt

    def _set_status(self, attempt: _Attempt, **changes: Any) -> None:
        """Update the tracked status unless the attempt was cancelled or superseded."""
        if self._is_current(attempt):
            self._statuses.update(attempt.task_id, **changes)

    async def _close_owned_backend(self) -> None:
        if self._owns_backend and self._backend is not None:
            await self._backend.aclose()
        self._owns_backend = False
