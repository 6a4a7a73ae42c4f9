"""Database configuration and models."""

from transcriptflow.core.database.base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from transcriptflow.core.database.session import (
    create_engine,
    create_engine_from_settings,
    create_session_factory,
    init_models,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utcnow",
    "create_engine",
    "create_engine_from_settings",
    "create_session_factory",
    "init_models",
]
