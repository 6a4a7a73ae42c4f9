"""Transcript export renderers and artifact writer."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from transcriptflow.core.ai.base import TranscriptionResult, TranscriptSegment
from transcriptflow.core.errors import StorageError, UnsupportedFormatError
from transcriptflow.core.logging import get_logger

logger = get_logger(__name__)


class ExportFormat(str, Enum):
    """Supported export formats."""

    TXT = "TXT"
    JSON = "JSON"
    SRT = "SRT"
    VTT = "VTT"

    @property
    def extension(self) -> str:
        return f".{self.value.lower()}"


def parse_export_format(value: ExportFormat | str) -> ExportFormat:
    """Accept an ExportFormat or a case-insensitive name."""
    if isinstance(value, ExportFormat):
        return value
    if isinstance(value, str):
        try:
            return ExportFormat(value.strip().upper())
        except ValueError:
            pass
    raise UnsupportedFormatError(value)


def format_timestamp(seconds: float, separator: str = ",") -> str:
    """Render ``seconds`` as HH:MM:SS<sep>mmm, rounded to the nearest millisecond."""
    total_ms = max(0, round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{ms:03d}"


def _cue(segment: TranscriptSegment, separator: str) -> str:
    start = format_timestamp(segment.start, separator)
    end = format_timestamp(segment.end, separator)
    return f"{start} --> {end}\n{segment.text.strip()}\n"


def render_txt(result: TranscriptionResult) -> str:
    return result.text


def render_json(result: TranscriptionResult) -> str:
    return result.model_dump_json(indent=2)


def render_srt(result: TranscriptionResult) -> str:
    cues = [f"{index}\n{_cue(segment, ',')}" for index, segment in enumerate(result.segments, start=1)]
    return "\n".join(cues)


def render_vtt(result: TranscriptionResult) -> str:
    cues = [_cue(segment, ".") for segment in result.segments]
    return "\n".join(["WEBVTT\n", *cues])


_RENDERERS = {
    ExportFormat.TXT: render_txt,
    ExportFormat.JSON: render_json,
    ExportFormat.SRT: render_srt,
    ExportFormat.VTT: render_vtt,
}


def render(result: TranscriptionResult, export_format: ExportFormat | str) -> str:
    """Render ``result`` in ``export_format``. Deterministic for a given result."""
    return _RENDERERS[parse_export_format(export_format)](result)


def write_export(
    result: TranscriptionResult,
    export_format: ExportFormat | str,
    exports_dir: str | Path,
) -> Path:
    """
    Write a rendered export to a new file.

    File name: ``transcription_<task_id>_<UTC timestamp><ext>``. Existing files
    are never overwritten; a numeric suffix is added instead.

    Returns:
        Path of the written file
    """
    export_format = parse_export_format(export_format)
    content = render(result, export_format)

    directory = Path(exports_dir)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    stem = f"transcription_{result.task_id}_{stamp}"

    try:
        directory.mkdir(parents=True, exist_ok=True)
        attempt = 0
        while True:
            suffix = f"_{attempt}" if attempt else ""
            path = directory / f"{stem}{suffix}{export_format.extension}"
            try:
                with path.open("x", encoding="utf-8") as f:
                    f.write(content)
                break
            except FileExistsError:
                attempt += 1
    except OSError as e:
        raise StorageError(f"Failed to write export: {e}", task_id=result.task_id) from e

    logger.info(
        "transcription_exported",
        task_id=result.task_id,
        format=export_format.value,
        path=str(path),
        size=len(content),
    )
    return path
