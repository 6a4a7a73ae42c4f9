"""Structured logging for transcriptflow.

The library only emits through ``get_logger``; the host decides where output
goes by calling ``setup_logging`` once:

    from transcriptflow.core.logging import setup_logging, get_logger

    setup_logging()  # from Settings
    logger = get_logger(__name__)
    logger.info("task_created", task_id=task.id)

Console output is coloured in development and JSON elsewhere. With
``log_to_file`` two rotating JSON files are written under ``logs_dir``:
``event.log`` for event bus traffic and ``transcriptflow.log`` for the rest.
"""

import logging
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from transcriptflow.config import Settings

MAIN_LOG_FILE = "transcriptflow.log"
EVENT_LOG_FILE = "event.log"

# Chatty dependencies; never more verbose than WARNING
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "aiosqlite",
    "httpx",
    "httpcore",
    "openai",
    "asyncio",
)

_PRE_CHAIN: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _formatter(as_json: bool) -> structlog.stdlib.ProcessorFormatter:
    if as_json:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)


def _use_json(log_format: str, app_env: str) -> bool:
    log_format = log_format.lower()
    if log_format == "auto":
        return app_env != "development"
    return log_format == "json"


def setup_logging(settings: "Settings | None" = None, *, level: str | None = None) -> None:
    """
    Route structlog and stdlib logging through one set of root handlers.

    Args:
        settings: Logging options; the cached settings when omitted
        level: Overrides ``settings.log_level``
    """
    if settings is None:
        from transcriptflow.config import get_settings

        settings = get_settings()

    numeric_level = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = []
    root.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(_use_json(settings.log_format, settings.app_env)))
    root.addHandler(console)

    if settings.log_to_file:
        for handler in _file_handlers(
            Path(settings.logs_dir),
            settings.log_file_max_bytes,
            settings.log_file_backup_count,
        ):
            root.addHandler(handler)

    quiet_level = max(logging.WARNING, numeric_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def _file_handlers(logs_dir: Path, max_bytes: int, backup_count: int) -> list[logging.Handler]:
    from transcriptflow.core.logging_filters import EventFilter, NonEventFilter

    logs_dir.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = []
    for file_name, log_filter in ((MAIN_LOG_FILE, NonEventFilter()), (EVENT_LOG_FILE, EventFilter())):
        handler = RotatingFileHandler(
            logs_dir / file_name,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(_formatter(as_json=True))
        handler.addFilter(log_filter)
        handlers.append(handler)
    return handlers


@contextmanager
def attempt_log_context(task_id: str, attempt_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with the attempt it belongs to."""
    with structlog.contextvars.bound_contextvars(task_id=task_id, attempt_id=attempt_id):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for ``name``; pass the calling module's ``__name__``."""
    return structlog.stdlib.get_logger(name)
