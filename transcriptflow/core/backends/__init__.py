"""Backend configuration module."""

from transcriptflow.core.backends.models import ApiConfig
from transcriptflow.core.backends.provider import ConfigProvider
from transcriptflow.core.backends.schemas import BackendConfig, BackendType

__all__ = ["ApiConfig", "BackendConfig", "BackendType", "ConfigProvider"]
