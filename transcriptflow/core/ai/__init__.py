"""Transcription backends module."""

from transcriptflow.core.ai.base import (
    TranscriptionBackend,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptSegment,
)
from transcriptflow.core.ai.custom import SelfHostedWhisperBackend
from transcriptflow.core.ai.factory import create_backend, parse_backend_type
from transcriptflow.core.ai.openai import OpenAIWhisperBackend

__all__ = [
    "TranscriptionBackend",
    "TranscriptionOptions",
    "TranscriptionResult",
    "TranscriptSegment",
    "OpenAIWhisperBackend",
    "SelfHostedWhisperBackend",
    "create_backend",
    "parse_backend_type",
]
