"""Transcription orchestration module."""

from transcriptflow.core.transcription.orchestrator import TranscriptionOrchestrator
from transcriptflow.core.transcription.status import (
    AttemptStatus,
    TranscriptionStatus,
    TranscriptionStatusStore,
)

__all__ = [
    "AttemptStatus",
    "TranscriptionOrchestrator",
    "TranscriptionStatus",
    "TranscriptionStatusStore",
]
