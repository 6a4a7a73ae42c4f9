"""
End-to-end tests for the transcription workflow.

Drives tasks from creation to export through the registry, the orchestrator
and the self-hosted backend client. The Whisper server is replaced by an
httpx.MockTransport so the whole HTTP path runs without a network.
"""

import base64
import json

import httpx
import pytest
import pytest_asyncio

from transcriptflow.core.ai import SelfHostedWhisperBackend, TranscriptionResult
from transcriptflow.core.backends import BackendConfig, BackendType
from transcriptflow.core.tasks import AudioSource, TaskState
from transcriptflow.core.transcription import AttemptStatus, TranscriptionOrchestrator

BROKEN_AUDIO = b"RIFF\x00\x00\x00\x00WAVEbroken"

WHISPER_RESPONSE = {
    "text": "Hello world",
    "language": "en",
    "confidence": 0.91,
    "segments": [
        {"start": 0.0, "end": 1.0, "text": "Hello"},
        {"start": 1.0, "end": 2.0, "text": "world"},
    ],
}


def whisper_server(request: httpx.Request) -> httpx.Response:
    """Answers /transcribe, refusing the connection for the broken recording."""
    body = json.loads(request.content)
    if base64.b64decode(body["audio"]) == BROKEN_AUDIO:
        raise httpx.ConnectError("Connection refused", request=request)
    return httpx.Response(200, json=WHISPER_RESPONSE)


def unreachable_server(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Network is unreachable", request=request)


def _backend(handler) -> SelfHostedWhisperBackend:
    config = BackendConfig(backend_type=BackendType.CUSTOM, endpoint="http://whisper.test", model="base")
    return SelfHostedWhisperBackend(config, transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def workflow(registry, test_settings):
    backend = _backend(whisper_server)
    orchestrator = TranscriptionOrchestrator(registry, backend=backend, exports_dir=test_settings.exports_dir)
    yield orchestrator
    await orchestrator.shutdown(timeout=5)
    await backend.aclose()


@pytest.fixture
def import_task(registry, make_audio_file):
    """Factory walking an IMPORT task to SAVED the way a caller would."""

    async def _import(name: str, data: bytes = b"RIFF\x00\x00\x00\x00WAVEfmt "):
        task = await registry.create_task(AudioSource.IMPORT)
        assert task.state is TaskState.PENDING
        await registry.attach_audio_file(task.id, make_audio_file(name, data), format="wav")
        return await registry.transition_state(task.id, TaskState.SAVED)

    return _import


@pytest.mark.e2e
class TestTranscriptionWorkflow:
    """Full lifecycle scenarios."""

    @pytest.mark.asyncio
    async def test_import_to_completed(self, workflow, registry, import_task):
        task = await import_task("interview.wav")

        await workflow.start_transcription(task.id)
        assert (await registry.get_task(task.id)).state is TaskState.IN_TRANSCRIB

        status = await workflow.wait_for_completion(task.id, timeout=5)

        assert status.status is AttemptStatus.COMPLETED
        assert status.progress == 100
        assert (await registry.get_task(task.id)).state is TaskState.COMPLETED

        result = await workflow.get_transcription_result(task.id)
        assert result.text == "Hello world"
        assert result.model == "base"
        assert result.language == "en"
        assert len(result.segments) == 2

    @pytest.mark.asyncio
    async def test_network_failure(self, registry, import_task, test_settings):
        backend = _backend(unreachable_server)
        orchestrator = TranscriptionOrchestrator(registry, backend=backend, exports_dir=test_settings.exports_dir)
        task = await import_task("offline.wav")

        await orchestrator.start_transcription(task.id)
        status = await orchestrator.wait_for_completion(task.id, timeout=5)

        assert status.status is AttemptStatus.FAILED
        assert status.error
        assert (await registry.get_task(task.id)).state is TaskState.FAILED
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_batch_with_one_failure(self, workflow, registry, import_task):
        t1 = await import_task("t1.wav", BROKEN_AUDIO)
        t2 = await import_task("t2.wav")

        results = await workflow.batch_transcribe([t1.id, t2.id])

        assert results[t1.id].status is AttemptStatus.FAILED
        assert results[t2.id].status is AttemptStatus.COMPLETED
        assert (await registry.get_task(t1.id)).state is TaskState.FAILED
        assert (await registry.get_task(t2.id)).state is TaskState.COMPLETED

    @pytest.mark.asyncio
    async def test_export_srt(self, workflow, import_task):
        task = await import_task("cues.wav")
        await workflow.start_transcription(task.id)
        await workflow.wait_for_completion(task.id, timeout=5)

        path = await workflow.export_transcription(task.id, "srt")

        assert path.suffix == ".srt"
        assert path.read_text(encoding="utf-8") == (
            "1\n00:00:00,000 --> 00:00:01,000\nHello\n"
            "\n"
            "2\n00:00:01,000 --> 00:00:02,000\nworld\n"
        )

    @pytest.mark.asyncio
    async def test_json_export_round_trip(self, workflow, import_task):
        task = await import_task("roundtrip.wav")
        await workflow.start_transcription(task.id)
        await workflow.wait_for_completion(task.id, timeout=5)
        original = await workflow.get_transcription_result(task.id)

        path = await workflow.export_transcription(task.id, "json")
        parsed = TranscriptionResult.model_validate_json(path.read_text(encoding="utf-8"))

        assert parsed == original

    @pytest.mark.asyncio
    async def test_retry_until_success(self, workflow, registry, import_task, make_audio_file):
        """A failed task can be re-saved with new audio and transcribed again."""
        task = await import_task("retry.wav", BROKEN_AUDIO)
        await workflow.start_transcription(task.id)
        await workflow.wait_for_completion(task.id, timeout=5)
        assert (await registry.get_task(task.id)).state is TaskState.FAILED

        await registry.transition_state(task.id, TaskState.PENDING)
        await registry.attach_audio_file(task.id, make_audio_file("retry-fixed.wav"))
        await registry.transition_state(task.id, TaskState.SAVED)
        await workflow.start_transcription(task.id)
        status = await workflow.wait_for_completion(task.id, timeout=5)

        assert status.status is AttemptStatus.COMPLETED
        assert len(await registry.get_audio_files(task.id)) == 2

    @pytest.mark.asyncio
    async def test_delete_after_completion(self, workflow, registry, import_task):
        task = await import_task("cleanup.wav")
        await workflow.start_transcription(task.id)
        await workflow.wait_for_completion(task.id, timeout=5)

        await registry.delete_task(task.id)

        assert await registry.get_task(task.id) is None
        assert await registry.get_audio_files(task.id) == []
