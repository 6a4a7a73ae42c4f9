"""Backend client factory."""

from openai import OpenAIError

from transcriptflow.core.ai.base import TranscriptionBackend
from transcriptflow.core.ai.custom import SelfHostedWhisperBackend
from transcriptflow.core.ai.openai import OpenAIWhisperBackend
from transcriptflow.core.backends.schemas import BackendConfig, BackendType
from transcriptflow.core.errors import BackendUnavailableError
from transcriptflow.core.logging import get_logger

logger = get_logger(__name__)

_BACKENDS: dict[BackendType, type[TranscriptionBackend]] = {
    BackendType.OPENAI: OpenAIWhisperBackend,
    BackendType.CUSTOM: SelfHostedWhisperBackend,
}


def parse_backend_type(value: BackendType | str) -> BackendType:
    """Validate a backend type string against the closed set of backends."""
    try:
        return BackendType(value.lower() if isinstance(value, str) else value)
    except ValueError:
        raise BackendUnavailableError(f"Unknown backend type: {value!r}", backend_type=str(value)) from None


def create_backend(config: BackendConfig) -> TranscriptionBackend:
    """Build the client for ``config.backend_type``."""
    backend_type = parse_backend_type(config.backend_type)
    backend_cls = _BACKENDS[backend_type]
    try:
        backend = backend_cls(config)
    except (ValueError, OpenAIError) as e:
        raise BackendUnavailableError(str(e), backend_type=backend_type.value) from e

    logger.info("backend_created", backend=backend.name, model=config.model)
    return backend
