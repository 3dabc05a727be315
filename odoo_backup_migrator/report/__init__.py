"""
Migration report generation and formatting helpers.

Key exports:
    - render_text_report: Render a MigrationResult as plain text
    - write_text_report: Render and write the report next to the output archive
    - format_bytes / format_duration_ms: Human-readable sizes and durations
"""

from .formatters import format_bytes, format_duration_ms, format_percentage
from .generator import render_text_report, write_text_report

__all__ = [
    "format_bytes",
    "format_duration_ms",
    "format_percentage",
    "render_text_report",
    "write_text_report",
]
