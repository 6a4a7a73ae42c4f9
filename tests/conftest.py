"""
Shared pytest fixtures for transcriptflow tests.

Test categories:
    - Unit tests: Pure functions and mocked clients, no database
    - Integration tests: Registry and orchestrator against a temporary SQLite file
    - E2E tests: Full task lifecycle scenarios, registry to export

Database:
    Every test gets its own SQLite file under pytest's tmp_path, so tests
    never share state and need no external services.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# =============================================================================
# Environment Setup
# =============================================================================

load_dotenv()

# Override settings BEFORE importing library modules
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["OPENAI_API_KEY"] = ""
os.environ["CUSTOM_API_URL"] = ""

from transcriptflow.config import Settings  # noqa: E402
from transcriptflow.core.ai.base import (  # noqa: E402
    TranscriptionBackend,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptSegment,
    count_words,
    read_audio,
)
from transcriptflow.core.database import create_engine, create_session_factory, init_models  # noqa: E402
from transcriptflow.core.errors import BackendError  # noqa: E402
from transcriptflow.core.events import EventBus  # noqa: E402
from transcriptflow.core.tasks import AudioSource, TaskInfo, TaskRegistry, TaskState  # noqa: E402
from transcriptflow.core.transcription import (  # noqa: E402
    TranscriptionOrchestrator,
    TranscriptionStatusStore,
)


# =============================================================================
# Fake Backend
# =============================================================================


class FakeBackend(TranscriptionBackend):
    """In-memory backend with scriptable failures and an optional gate."""

    def __init__(
        self,
        text: str = "Hello world",
        segments: list[TranscriptSegment] | None = None,
        fail_paths: set[str] | None = None,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ):
        self.text = text
        self.segments = segments if segments is not None else [
            TranscriptSegment(start=0.0, end=1.0, text="Hello"),
            TranscriptSegment(start=1.0, end=2.0, text="world"),
        ]
        self.fail_paths = fail_paths or set()
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, TranscriptionOptions | None]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def transcribe(self, audio_path, options=None) -> TranscriptionResult:
        self.calls.append((str(audio_path), options))
        read_audio(audio_path)

        if self.gate is not None:
            await self.gate.wait()

        if self.error is not None:
            raise self.error
        if str(audio_path) in self.fail_paths:
            raise BackendError("Connection refused by transcription server")

        return TranscriptionResult(
            model="fake-whisper",
            language="en",
            confidence=0.93,
            word_count=count_words(self.text),
            text=self.text,
            segments=list(self.segments),
            api_response={"text": self.text, "language": "en"},
        )

    async def list_models(self) -> list[str]:
        return ["fake-whisper"]

    async def test_connection(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with no backend credentials and a private exports dir."""
    return Settings(
        _env_file=None,
        app_env="testing",
        log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        exports_dir=str(tmp_path / "exports"),
        openai_api_key="",
        custom_api_url="",
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings):
    """Engine bound to a fresh SQLite file with all tables created."""
    engine = create_engine(test_settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine):
    """Create session factory for tests."""
    return create_session_factory(test_engine)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest_asyncio.fixture
async def registry(test_session_factory, event_bus: EventBus) -> TaskRegistry:
    return TaskRegistry(test_session_factory, events=event_bus)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def status_store() -> TranscriptionStatusStore:
    return TranscriptionStatusStore()


@pytest_asyncio.fixture
async def orchestrator(
    registry: TaskRegistry,
    fake_backend: FakeBackend,
    status_store: TranscriptionStatusStore,
    test_settings: Settings,
) -> AsyncGenerator[TranscriptionOrchestrator, None]:
    orch = TranscriptionOrchestrator(
        registry,
        backend=fake_backend,
        status_store=status_store,
        exports_dir=test_settings.exports_dir,
    )
    yield orch
    await orch.shutdown(timeout=5)


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def make_audio_file(tmp_path: Path):
    """Factory writing a small audio artifact and returning its path."""

    def _make(name: str = "sample.wav", data: bytes = b"RIFF\x00\x00\x00\x00WAVEfmt ") -> Path:
        path = tmp_path / "audio" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return _make


@pytest.fixture
def make_saved_task(registry: TaskRegistry, make_audio_file):
    """Factory creating an IMPORT task with audio attached, moved to SAVED."""

    async def _make(name: str = "sample.wav", title: str | None = None) -> TaskInfo:
        metadata = {"title": title} if title else None
        task = await registry.create_task(AudioSource.IMPORT, metadata)
        await registry.attach_audio_file(task.id, make_audio_file(name))
        return await registry.transition_state(task.id, TaskState.SAVED)

    return _make
