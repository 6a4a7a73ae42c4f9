"""Ephemeral per-task transcription attempt status."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any


class AttemptStatus(str, Enum):
    """Status of a transcription attempt."""

    QUEUED = "queued"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


TERMINAL_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.FAILED, AttemptStatus.CANCELLED})


@dataclass
class TranscriptionStatus:
    """Progress of the latest attempt for one task."""

    task_id: str
    status: AttemptStatus
    progress: int = 0  # 0-100
    error: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def not_found(cls, task_id: str) -> "TranscriptionStatus":
        return cls(task_id=task_id, status=AttemptStatus.NOT_FOUND)


class TranscriptionStatusStore:
    """
    In-memory status map keyed by task id.

    One store per orchestrator; nothing survives a restart. Reads return
    copies so callers cannot change tracked entries.
    """

    def __init__(self):
        self._entries: dict[str, TranscriptionStatus] = {}

    def get(self, task_id: str) -> TranscriptionStatus:
        entry = self._entries.get(task_id)
        return replace(entry) if entry else TranscriptionStatus.not_found(task_id)

    def put(self, status: TranscriptionStatus) -> None:
        """Track ``status``, superseding any previous entry for the task."""
        self._entries[status.task_id] = replace(status)

    def update(self, task_id: str, **changes: Any) -> TranscriptionStatus:
        """Apply ``changes`` to a tracked entry.

        Raises:
            KeyError: Task has no tracked entry
        """
        entry = replace(self._entries[task_id], **changes)
        self._entries[task_id] = entry
        return replace(entry)

    def remove(self, task_id: str) -> None:
        self._entries.pop(task_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
