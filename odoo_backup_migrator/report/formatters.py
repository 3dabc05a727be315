"""
Formatting helpers for reports, logs and console output.

This module provides:
- format_bytes: Human-readable file sizes (B, KB, MB, GB)
- format_duration_ms: Human-readable durations from milliseconds
- format_percentage: Progress percentages with one decimal

Examples:
    >>> format_bytes(1536)
    '1.50 KB'
    >>> format_duration_ms(83_500)
    '1m 23.5s'
"""

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024


def format_bytes(size: int) -> str:
    """
    Format a byte count with a binary unit suffix.

    Args:
        size: Size in bytes (must be non-negative)

    Returns:
        str: "512 B", "1.50 KB", "12.34 MB" or "1.02 GB"

    Raises:
        ValueError: If size is negative

    Examples:
        >>> format_bytes(0)
        '0 B'
        >>> format_bytes(5 * 1024 * 1024)
        '5.00 MB'
    """
    if size < 0:
        raise ValueError(f"Size cannot be negative: {size}")

    if size < _KB:
        return f"{size} B"
    if size < _MB:
        return f"{size / _KB:.2f} KB"
    if size < _GB:
        return f"{size / _MB:.2f} MB"
    return f"{size / _GB:.2f} GB"


def format_duration_ms(duration_ms: int | float) -> str:
    """
    Format a millisecond duration.

    Examples:
        >>> format_duration_ms(42)
        '42ms'
        >>> format_duration_ms(2_500)
        '2.5s'
        >>> format_duration_ms(3_723_000)
        '1h 2m 3.0s'
    """
    if duration_ms < 0:
        raise ValueError(f"Duration cannot be negative: {duration_ms}")

    if duration_ms < 1000:
        return f"{int(duration_ms)}ms"

    total_seconds = duration_ms / 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if hours >= 1:
        return f"{int(hours)}h {int(minutes)}m {seconds:.1f}s"
    if minutes >= 1:
        return f"{int(minutes)}m {seconds:.1f}s"
    return f"{seconds:.1f}s"


def format_percentage(value: float) -> str:
    """Format a 0-100 value as a percentage string with one decimal."""
    return f"{value:.1f}%"
