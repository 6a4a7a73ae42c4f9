"""Task lifecycle and transcription orchestration."""

from transcriptflow.core.ai import TranscriptionOptions, TranscriptionResult, TranscriptSegment, create_backend
from transcriptflow.core.backends import BackendConfig, BackendType, ConfigProvider
from transcriptflow.core.database import create_engine_from_settings, create_session_factory, init_models
from transcriptflow.core.events import Event, EventBus, EventType
from transcriptflow.core.export import ExportFormat
from transcriptflow.core.tasks import AudioSource, TaskFilters, TaskInfo, TaskRegistry, TaskState
from transcriptflow.core.transcription import (
    AttemptStatus,
    TranscriptionOrchestrator,
    TranscriptionStatus,
    TranscriptionStatusStore,
)

__version__ = "0.1.0"

__all__ = [
    "AttemptStatus",
    "AudioSource",
    "BackendConfig",
    "BackendType",
    "ConfigProvider",
    "Event",
    "EventBus",
    "EventType",
    "ExportFormat",
    "TaskFilters",
    "TaskInfo",
    "TaskRegistry",
    "TaskState",
    "TranscriptionOptions",
    "TranscriptionOrchestrator",
    "TranscriptionResult",
    "TranscriptSegment",
    "TranscriptionStatus",
    "TranscriptionStatusStore",
    "create_backend",
    "create_engine_from_settings",
    "create_session_factory",
    "init_models",
]
