"""Database models for tasks, their audio files and transcriptions."""

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from transcriptflow.core.database.base import Base, TimestampMixin, UUIDMixin
from transcriptflow.core.tasks.states import TaskState


class Task(Base, UUIDMixin, TimestampMixin):
    """One audio-to-text job."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    state: Mapped[str] = mapped_column(String(20), default=TaskState.PENDING.value, nullable=False)
    audio_source: Mapped[str] = mapped_column(String(20), nullable=False)

    audio_loc: Mapped[str | None] = mapped_column(String(1024))
    transcription_loc: Mapped[str | None] = mapped_column(String(36))  # StoredTranscription id

    # "metadata" is reserved on declarative classes
    properties: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    # Relationships
    audio_files: Mapped[list["AudioFile"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transcriptions: Mapped[list["StoredTranscription"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_tasks_state", "state"),
        Index("idx_tasks_audio_source", "audio_source"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.state}>"


class AudioFile(Base, UUIDMixin, TimestampMixin):
    """Audio artifact owned by a task."""

    __tablename__ = "audio_files"

    task_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer)
    duration: Mapped[float | None] = mapped_column(Float)  # seconds
    format: Mapped[str | None] = mapped_column(String(20))
    sample_rate: Mapped[int | None] = mapped_column(Integer)
    channels: Mapped[int | None] = mapped_column(Integer)
    bit_rate: Mapped[int | None] = mapped_column(Integer)

    task: Mapped["Task"] = relationship(back_populates="audio_files")

    __table_args__ = (Index("idx_audio_files_task", "task_id"),)

    def __repr__(self) -> str:
        return f"<AudioFile {self.file_name}>"


class StoredTranscription(Base, UUIDMixin, TimestampMixin):
    """Persisted transcription result; at most one per task."""

    __tablename__ = "transcription_results"

    task_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )

    format: Mapped[str] = mapped_column(String(20), default="text")
    model: Mapped[str | None] = mapped_column(String(100))
    language: Mapped[str | None] = mapped_column(String(20))
    confidence: Mapped[float | None] = mapped_column(Float)
    processing_time: Mapped[float | None] = mapped_column(Float)
    word_count: Mapped[int] = mapped_column(Integer, default=0)

    text: Mapped[str] = mapped_column(Text, default="")
    segments: Mapped[list] = mapped_column(JSON, default=list)
    api_response: Mapped[dict | None] = mapped_column(JSON)

    task: Mapped["Task"] = relationship(back_populates="transcriptions")

    __table_args__ = (Index("idx_transcription_results_task", "task_id"),)

    def __repr__(self) -> str:
        return f"<StoredTranscription {self.id} task={self.task_id}>"
