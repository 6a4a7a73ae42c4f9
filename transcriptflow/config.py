"""Library configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings read from environment variables or ``.env``.

    Backend credentials here are the fallback used when no active
    ``api_configs`` row exists for the selected backend.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "transcriptflow"
    app_env: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["auto", "console", "json"] = "auto"  # auto: console in development
    logs_dir: str = "./logs"
    log_to_file: bool = False
    log_file_max_bytes: int = 10 * 1024 * 1024
    log_file_backup_count: int = 5

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./transcriptflow.db"
    database_echo: bool = False
    exports_dir: str = "./exports"

    # Transcription
    transcription_backend: Literal["openai", "custom"] = "openai"
    openai_api_key: str = ""
    openai_base_url: str = ""  # empty: SDK default endpoint
    openai_model: str = "whisper-1"
    custom_api_url: str = ""
    custom_api_key: str = ""
    custom_model: str = "base"
    backend_timeout_seconds: float = Field(default=30, gt=0)
    backend_max_retries: int = Field(default=3, ge=0)

    # Seconds shutdown waits for in-flight attempts
    shutdown_timeout_seconds: float = Field(default=30, ge=0)

    @field_validator("transcription_backend", "log_format", mode="before")
    @classmethod
    def lowercase(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("custom_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
