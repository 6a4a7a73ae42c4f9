"""Base transcription backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from transcriptflow.core.database.base import new_id, utcnow
from transcriptflow.core.errors import NotFoundError, UnsupportedAudioFormatError

SUPPORTED_AUDIO_EXTENSIONS = frozenset(
    {".wav", ".mp3", ".mp4", ".m4a", ".flac", ".aac", ".ogg", ".webm", ".mpeg", ".mpga"}
)


class TranscriptSegment(BaseModel):
    """Timed piece of transcript text."""

    start: float  # seconds
    end: float  # seconds
    text: str


class TranscriptionResult(BaseModel):
    """Result of audio transcription, as returned by a backend and rendered by exports."""

    result_id: str = Field(default_factory=new_id)
    task_id: str = ""
    format: str = "text"
    model: str = ""
    language: str | None = None
    confidence: float | None = None
    processing_time: float = 0.0  # seconds
    word_count: int = 0
    text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    api_response: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


@dataclass
class TranscriptionOptions:
    """Per-call transcription options; unset values fall back to backend defaults."""

    model: str | None = None
    language: str | None = None  # e.g. "en", "pl"
    temperature: float | None = None
    prompt: str | None = None


def count_words(text: str | None) -> int:
    """Number of maximal whitespace-delimited tokens."""
    if not text:
        return 0
    return len(text.split())


def parse_segments(raw_segments: Any) -> list[TranscriptSegment]:
    """Build segments from provider output; accepts dicts or attribute objects."""
    segments = []
    for seg in raw_segments or []:
        if isinstance(seg, dict):
            start, end, text = seg.get("start", 0.0), seg.get("end", 0.0), seg.get("text", "")
        else:
            start = getattr(seg, "start", 0.0)
            end = getattr(seg, "end", 0.0)
            text = getattr(seg, "text", "")
        segments.append(TranscriptSegment(start=float(start), end=float(end), text=text or ""))
    return segments


def read_audio(audio_path: str | Path) -> bytes:
    """Read an audio artifact fully.

    Raises:
        NotFoundError: File does not exist
        UnsupportedAudioFormatError: Extension is not a supported audio type
    """
    path = Path(audio_path)
    if not path.is_file():
        raise NotFoundError(f"Audio file not found: {path}", path=str(path))

    if path.suffix.lower() not in SUPPORTED_AUDIO_EXTENSIONS:
        raise UnsupportedAudioFormatError(
            f"Unsupported audio format: {path.suffix or '<none>'}",
            path=str(path),
        )

    return path.read_bytes()


class TranscriptionBackend(ABC):
    """Abstract base class for transcription backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name."""
        ...

    @abstractmethod
    async def transcribe(
        self,
        audio_path: str | Path,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe the audio file at ``audio_path``."""
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Model identifiers the backend accepts."""
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check reachability and credentials. Never raises."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        return None
