"""Read models returned by the task registry."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from transcriptflow.core.database.base import as_utc
from transcriptflow.core.tasks.models import AudioFile, Task
from transcriptflow.core.tasks.states import AudioSource, TaskState


class TaskInfo(BaseModel):
    """Snapshot of a task row."""

    id: str
    title: str
    description: str | None = None
    state: TaskState
    audio_source: AudioSource
    audio_loc: str | None = None
    transcription_loc: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, task: Task) -> "TaskInfo":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            state=TaskState(task.state),
            audio_source=AudioSource(task.audio_source),
            audio_loc=task.audio_loc,
            transcription_loc=task.transcription_loc,
            metadata=dict(task.properties or {}),
            created_at=as_utc(task.created_at),
            updated_at=as_utc(task.updated_at),
        )


class AudioFileInfo(BaseModel):
    """Snapshot of an audio file row."""

    id: str
    task_id: str
    file_name: str
    file_path: str
    file_size: int | None = None
    duration: float | None = None
    format: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bit_rate: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, audio_file: AudioFile) -> "AudioFileInfo":
        return cls(
            id=audio_file.id,
            task_id=audio_file.task_id,
            file_name=audio_file.file_name,
            file_path=audio_file.file_path,
            file_size=audio_file.file_size,
            duration=audio_file.duration,
            format=audio_file.format,
            sample_rate=audio_file.sample_rate,
            channels=audio_file.channels,
            bit_rate=audio_file.bit_rate,
            created_at=as_utc(audio_file.created_at),
            updated_at=as_utc(audio_file.updated_at),
        )


class TaskFilters(BaseModel):
    """Conjunctive task list filters."""

    state: TaskState | None = None
    audio_source: AudioSource | None = None
    start_date: datetime | None = None  # created_at >= start_date
    end_date: datetime | None = None  # created_at <= end_date
    search_query: str | None = None  # title/description substring
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class TaskPage(BaseModel):
    """One page of tasks with the total match count."""

    items: list[TaskInfo]
    total: int
    limit: int | None
    offset: int
    has_more: bool
