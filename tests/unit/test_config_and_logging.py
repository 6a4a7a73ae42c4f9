"""Unit tests for settings parsing and logging setup."""

import json
import logging

import pytest
import structlog
from pydantic import ValidationError

from transcriptflow.config import Settings
from transcriptflow.core.logging import (
    EVENT_LOG_FILE,
    MAIN_LOG_FILE,
    attempt_log_context,
    get_logger,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestSettings:
    """Tests for Settings normalisation and validation."""

    def test_defaults(self):
        s = Settings(_env_file=None, openai_api_key="", custom_api_url="")

        assert s.transcription_backend == "openai"
        assert s.openai_model == "whisper-1"
        assert s.openai_base_url == ""
        assert s.custom_model == "base"
        assert s.backend_timeout_seconds == 30
        assert s.backend_max_retries == 3

    def test_backend_name_normalised(self):
        s = Settings(_env_file=None, transcription_backend="  Custom ", log_format="JSON")

        assert s.transcription_backend == "custom"
        assert s.log_format == "json"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, transcription_backend="azure")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, backend_timeout_seconds=0)

    def test_custom_url_trailing_slash(self):
        s = Settings(_env_file=None, custom_api_url="http://whisper.local:9000/")

        assert s.custom_api_url == "http://whisper.local:9000"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CUSTOM_API_URL", "http://env-host:9000")
        monkeypatch.setenv("BACKEND_MAX_RETRIES", "5")

        s = Settings(_env_file=None)

        assert s.custom_api_url == "http://env-host:9000"
        assert s.backend_max_retries == 5


@pytest.mark.unit
class TestLogging:
    """Tests for setup_logging file routing and attempt context."""

    def test_event_logs_go_to_their_own_file(self, tmp_path, restore_root_logger):
        settings = Settings(
            _env_file=None,
            log_level="INFO",
            log_format="json",
            log_to_file=True,
            logs_dir=str(tmp_path / "logs"),
        )
        setup_logging(settings)

        get_logger("transcriptflow.core.events.bus").info("event_line", n=1)
        get_logger("transcriptflow.core.tasks.registry").info("task_line", n=2)
        for handler in logging.getLogger().handlers:
            handler.flush()

        event_lines = (tmp_path / "logs" / EVENT_LOG_FILE).read_text(encoding="utf-8").splitlines()
        main_lines = (tmp_path / "logs" / MAIN_LOG_FILE).read_text(encoding="utf-8").splitlines()

        assert [json.loads(line)["event"] for line in event_lines] == ["event_line"]
        assert "task_line" in [json.loads(line)["event"] for line in main_lines]
        assert "event_line" not in [json.loads(line)["event"] for line in main_lines]

    def test_level_filters_records(self, tmp_path, restore_root_logger):
        settings = Settings(
            _env_file=None,
            log_level="WARNING",
            log_format="json",
            log_to_file=True,
            logs_dir=str(tmp_path / "logs"),
        )
        setup_logging(settings)

        logger = get_logger("transcriptflow.core.tasks.states")
        logger.info("too_quiet")
        logger.warning("loud_enough")
        for handler in logging.getLogger().handlers:
            handler.flush()

        events = [
            json.loads(line)["event"]
            for line in (tmp_path / "logs" / MAIN_LOG_FILE).read_text(encoding="utf-8").splitlines()
        ]
        assert events == ["loud_enough"]

    def test_attempt_context_is_scoped(self):
        with attempt_log_context("task-1", "attempt-1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["task_id"] == "task-1"
            assert bound["attempt_id"] == "attempt-1"

        assert "task_id" not in structlog.contextvars.get_contextvars()
