"""Task lifecycle module."""

from transcriptflow.core.tasks.models import AudioFile, StoredTranscription, Task
from transcriptflow.core.tasks.registry import TaskRegistry
from transcriptflow.core.tasks.schemas import AudioFileInfo, TaskFilters, TaskInfo, TaskPage
from transcriptflow.core.tasks.states import (
    ALLOWED_TRANSITIONS,
    AudioSource,
    TaskState,
    is_valid_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AudioFile",
    "AudioFileInfo",
    "AudioSource",
    "StoredTranscription",
    "Task",
    "TaskFilters",
    "TaskInfo",
    "TaskPage",
    "TaskRegistry",
    "TaskState",
    "is_valid_transition",
]
