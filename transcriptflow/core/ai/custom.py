"""Self-hosted Whisper server backend."""

import base64
import time
from pathlib import Path
from typing import Any

import httpx

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


class SelfHostedWhisperBackend(TranscriptionBackend):
    """
    Client for a self-hosted Whisper HTTP server.

    Endpoints:
    - POST /transcribe  JSON body with base64 audio
    - GET  /models      {"models": [...]} or a bare list
    - GET  /health      200 when ready
    """

    RESPONSE_FORMAT = "json"

    def __init__(self, config: BackendConfig, transport: httpx.AsyncBaseTransport | None = None):
        if not config.endpoint:
            raise ValueError("Self-hosted backend requires an endpoint URL")

        self._config = config
        headers = {"Content-Type": "application/json"}
        if config.credential:
            headers["Authorization"] = f"Bearer {config.credential}"

        self._client = httpx.AsyncClient(
            base_url=config.endpoint,
            headers=headers,
            timeout=config.timeout_seconds,
            transport=transport or httpx.AsyncHTTPTransport(retries=config.max_retries),
        )

    @property
    def name(self) -> str:
        return "custom"

    async def transcribe(
        self,
        audio_path: str | Path,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        options = options or TranscriptionOptions()
        path = Path(audio_path)
        audio_data = read_audio(path)
        model = options.model or self._config.model

        request_body: dict[str, Any] = {
            "audio": base64.b64encode(audio_data).decode("ascii"),
            "model": model,
            "language": options.language,
            "temperature": options.temperature,
            "prompt": options.prompt,
        }

        logger.info("custom_transcription_started", audio_path=str(path), model=model)
        started = time.monotonic()

        data = await self._request("POST", "/transcribe", json=request_body)
        if not isinstance(data, dict):
            raise BackendError("Self-hosted backend returned a non-object response", backend=self.name)

        text = data.get("text") or ""
        result = TranscriptionResult(
            format=self.RESPONSE_FORMAT,
            model=model,
            language=data.get("language") or options.language,
            confidence=data.get("confidence"),
            processing_time=data.get("processing_time") or (time.monotonic() - started),
            word_count=count_words(text),
            text=text,
            segments=parse_segments(data.get("segments")),
            api_response=data,
        )

        logger.info(
            "custom_transcription_completed",
            result_id=result.result_id,
            word_count=result.word_count,
            language=result.language,
        )
        return result

    async def list_models(self) -> list[str]:
        data = await self._request("GET", "/models")
        models = data.get("models", []) if isinstance(data, dict) else data
        logger.debug("custom_models_listed", count=len(models or []))
        return [str(m) for m in models or []]

    async def test_connection(self) -> bool:
        try:
            response = await self._client.get("/health")
        except Exception as e:
            logger.warning("custom_connection_test_failed", error=str(e))
            return False

        connected = response.status_code == 200
        logger.info("custom_connection_tested", status=response.status_code, connected=connected)
        return connected

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body, wrapping transport and HTTP errors."""
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("custom_request_failed", url=url, status=e.response.status_code)
            raise BackendError(
                f"Self-hosted backend returned HTTP {e.response.status_code} for {url}",
                backend=self.name,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("custom_request_failed", url=url, error=str(e))
            raise BackendError(f"Self-hosted backend request failed: {e}", backend=self.name) from e
        except ValueError as e:
            raise BackendError(f"Self-hosted backend returned invalid JSON: {e}", backend=self.name) from e
