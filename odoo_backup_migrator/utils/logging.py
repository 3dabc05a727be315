"""
Structured JSON logging for the Odoo Backup Migrator.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- Secret redaction (database passwords never reach the log)
- Component-based logger creation

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from odoo_backup_migrator.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("archive.handler")
    >>> logger.info("Extraction complete", extra={"context": {"version": "16.0"}})

Security:
    - NEVER log database passwords in full
    - Passwords passed to psql/pg_dump travel via PGPASSWORD, which is redacted
    - Only stderr is used (stdout reserved for user output)
"""

import json
import logging
import re
import sys
from typing import Any

from .time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON with structured fields.

    Each log record is formatted as a JSON object with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (INFO, WARNING, ERROR, DEBUG)
    - component: Module/component name (from logger name)
    - message: Human-readable log message
    - context: Additional structured data (from 'context' in extra)
    - run_id: Current run identifier (from 'run_id' in extra, if available)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts database credentials from log records.

    Prevents accidental logging of:
    - PGPASSWORD environment assignments
    - password=... key/value pairs (libpq conninfo strings)
    - Passwords embedded in postgresql:// URLs
    - Values of context keys that look like secrets ("password", "secret")

    "PGPASSWORD=hunter2" -> "PGPASSWORD=***"
    "postgresql://odoo:hunter2@db/odoo" -> "postgresql://odoo:***@db/odoo"
    """

    SECRET_PATTERNS = [
        (re.compile(r"(PGPASSWORD\s*=\s*)\S+"), r"\1***"),
        (re.compile(r"(password\s*[=:]\s*)(['\"]?)[^\s'\",}]+\2", re.IGNORECASE), r"\1\2***\2"),
        (re.compile(r"(postgres(?:ql)?://[^:/\s]+:)[^@\s]+(@)"), r"\1***\2"),
    ]

    SECRET_KEYS = frozenset({"password", "pgpassword", "secret", "pwfile_content"})

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, replacement in self.SECRET_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if str(key).lower() in self.SECRET_KEYS:
                result[key] = "***"
            elif isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Sets up:
    - JSON formatter for structured output
    - Secret redaction filter
    - stderr output (stdout reserved for user-facing content)
    - Log level: DEBUG if verbose=True, INFO otherwise

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        quiet_logs: If True and not verbose, only WARNING and above reach
            stderr. Used in human console mode so JSON lines do not interleave
            with the Rich progress display.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if verbose:
        handler.setLevel(logging.DEBUG)
    elif quiet_logs:
        handler.setLevel(logging.WARNING)
    else:
        handler.setLevel(logging.INFO)

    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger instance for a specific component.

    Args:
        component: Component name (e.g., "database.embedded", "pipeline.runner")

    Returns:
        Logger instance configured for JSON output
    """
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional run_id.

    Equivalent to logger.log(level, message, extra={'context': {...}, 'run_id': '...'})

    Example:
        >>> logger = get_logger("pipeline.runner")
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Phase finished",
        ...     context={"phase": "extraction", "duration_ms": 812},
        ...     run_id="odoo-migration-1762072245123-3f9c2a1b",
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)
