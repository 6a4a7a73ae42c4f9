"""Error taxonomy shared by the registry, orchestrator, backends and exporters."""

from typing import Any


class TranscriptFlowError(Exception):
    """Base class for all library errors."""

    code = "TRANSCRIPTFLOW_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(TranscriptFlowError):
    """Task, result, audio artifact or configuration is absent."""

    code = "NOT_FOUND"


class InvalidStateError(TranscriptFlowError):
    """Operation attempted from a state that forbids it."""

    code = "INVALID_STATE"


class InvalidTransitionError(TranscriptFlowError):
    """Requested state is not reachable from the current state."""

    code = "INVALID_TRANSITION"

    def __init__(self, task_id: str, from_state: Any, to_state: Any):
        source = getattr(from_state, "value", from_state)
        target = getattr(to_state, "value", to_state)
        super().__init__(
            f"Invalid state transition for task {task_id}: {source} -> {target}",
            task_id=task_id,
            from_state=source,
            to_state=target,
        )
        self.task_id = task_id
        self.from_state = from_state
        self.to_state = to_state


class BackendUnavailableError(TranscriptFlowError):
    """No usable transcription backend is configured."""

    code = "BACKEND_UNAVAILABLE"


class BackendError(TranscriptFlowError):
    """Network, auth or payload failure reported by a backend client."""

    code = "BACKEND_ERROR"


class UnsupportedAudioFormatError(BackendError):
    """Audio artifact has an extension no backend accepts."""

    code = "UNSUPPORTED_AUDIO_FORMAT"


class UnsupportedFormatError(TranscriptFlowError):
    """Export format is not one of TXT, JSON, SRT, VTT."""

    code = "UNSUPPORTED_FORMAT"

    def __init__(self, value: Any):
        super().__init__(f"Unsupported export format: {value!r}", value=value)
        self.value = value


class StorageError(TranscriptFlowError):
    """Persistent store failed to read or write."""

    code = "STORAGE_ERROR"
