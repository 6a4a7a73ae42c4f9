"""Transcript export module."""

from transcriptflow.core.export.formatter import (
    ExportFormat,
    format_timestamp,
    parse_export_format,
    render,
    write_export,
)

__all__ = ["ExportFormat", "format_timestamp", "parse_export_format", "render", "write_export"]
