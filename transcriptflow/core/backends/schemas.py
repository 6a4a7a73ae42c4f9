"""Backend selection and connection settings."""

from enum import Enum

from pydantic import BaseModel, Field


class BackendType(str, Enum):
    """Supported transcription backends."""

    OPENAI = "openai"
    CUSTOM = "custom"  # self-hosted Whisper server


class BackendConfig(BaseModel):
    """Resolved connection settings for one backend."""

    backend_type: BackendType
    endpoint: str | None = None
    credential: str | None = None
    model: str
    timeout_seconds: float = Field(default=30, gt=0)
    max_retries: int = Field(default=3, ge=0)
