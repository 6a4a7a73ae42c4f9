"""OpenAI Whisper transcription backend."""

import io
import time
from pathlib import Path
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from transcriptflow.core.ai.base import (
    TranscriptionBackend,
    TranscriptionOptions,
    TranscriptionResult,
    count_words,
    parse_segments,
    read_audio,
)
from transcriptflow.core.backends.schemas import BackendConfig
from transcriptflow.core.errors import BackendError
from transcriptflow.core.logging import get_logger

logger = get_logger(__name__)


class OpenAIWhisperBackend(TranscriptionBackend):
    """
    OpenAI audio transcription backend.

    Features:
    - Multipart upload through the official SDK
    - Segment timestamps via verbose_json
    - SDK-managed retries with backoff
    """

    RESPONSE_FORMAT = "verbose_json"
    MODEL_MARKERS = ("whisper", "transcribe")

    def __init__(self, config: BackendConfig, client: AsyncOpenAI | None = None):
        self._config = config
        self._client = client or AsyncOpenAI(
            api_key=config.credential,
            base_url=config.endpoint or None,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    @property
    def name(self) -> str:
        return "openai"

    async def transcribe(
        self,
        audio_path: str | Path,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """
        Transcribe an audio file with a Whisper model.

        Args:
            audio_path: Path to the audio artifact
            options: Model, language, temperature and prompt overrides

        Returns:
            TranscriptionResult with text and segment timestamps
        """
        options = options or TranscriptionOptions()
        path = Path(audio_path)
        audio_data = read_audio(path)
        model = options.model or self._config.model

        # Create file-like object
        audio_file = io.BytesIO(audio_data)
        audio_file.name = path.name

        transcription_params: dict[str, Any] = {
            "model": model,
            "file": audio_file,
            "response_format": self.RESPONSE_FORMAT,
        }
        if options.language:
            transcription_params["language"] = options.language
        if options.temperature is not None:
            transcription_params["temperature"] = options.temperature
        if options.prompt:
            transcription_params["prompt"] = options.prompt

        logger.info("openai_transcription_started", audio_path=str(path), model=model)
        started = time.monotonic()

        try:
            response = await self._client.audio.transcriptions.create(**transcription_params)
        except OpenAIError as e:
            logger.error("openai_transcription_failed", audio_path=str(path), error=str(e))
            raise BackendError(f"OpenAI transcription failed: {e}", backend=self.name) from e

        raw = response.model_dump() if hasattr(response, "model_dump") else {}
        text = getattr(response, "text", "") or ""

        result = TranscriptionResult(
            format=self.RESPONSE_FORMAT,
            model=model,
            language=getattr(response, "language", None) or options.language,
            confidence=raw.get("confidence"),
            processing_time=time.monotonic() - started,
            word_count=count_words(text),
            text=text,
            segments=parse_segments(getattr(response, "segments", None)),
            api_response=raw,
        )

        logger.info(
            "openai_transcription_completed",
            result_id=result.result_id,
            word_count=result.word_count,
            language=result.language,
        )
        return result

    async def list_models(self) -> list[str]:
        """List transcription-capable model ids."""
        try:
            page = await self._client.models.list()
        except OpenAIError as e:
            raise BackendError(f"Failed to list OpenAI models: {e}", backend=self.name) from e

        models = [m.id for m in page.data if any(marker in m.id for marker in self.MODEL_MARKERS)]
        logger.debug("openai_models_listed", count=len(models))
        return models

    async def test_connection(self) -> bool:
        try:
            await self._client.models.list()
        except Exception as e:
            logger.warning("openai_connection_test_failed", error=str(e))
            return False
        logger.info("openai_connection_test_succeeded")
        return True

    async def aclose(self) -> None:
        await self._client.close()
