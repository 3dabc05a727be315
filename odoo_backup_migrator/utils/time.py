"""
UTC timestamp utilities for the Odoo Backup Migrator.

All timestamps MUST be in UTC with explicit timezone markers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- epoch_millis(): Milliseconds since the epoch, used in generated names
- elapsed_ms(): Milliseconds elapsed since a perf_counter() reading

Examples:
    >>> from odoo_backup_migrator.utils.time import utc_now, utc_timestamp
    >>> now = utc_now()
    >>> now.tzinfo
    datetime.timezone.utc
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ
    Example: 2025-11-02T08:30:45Z

    Used for manifest timestamps, logging and the text report.
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def epoch_millis() -> int:
    """
    Return the current UTC time as integer milliseconds since the epoch.

    Example:
        >>> epoch_millis()
        1762072245123
    """
    return int(utc_now().timestamp() * 1000)


def elapsed_ms(started: float) -> int:
    """
    Milliseconds elapsed since ``started``, a ``time.perf_counter()`` reading.

    Example:
        >>> started = time.perf_counter()
        >>> elapsed_ms(started) >= 0
        True
    """
    return int((time.perf_counter() - started) * 1000)
