"""Utility functions for cavekeeper."""

from __future__ import annotations

from datetime import UTC, datetime

EPOCH = datetime.fromtimestamp(0, tz=UTC)


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size: Size in bytes

    Returns:
        Formatted string with appropriate unit (e.g., "1.5 MB")

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1048576)
        '1.0 MB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def format_time_ago(when: datetime | None, now: datetime | None = None) -> str:
    """Format a timestamp relative to now (e.g., "3 days ago").

    Args:
        when: Timestamp to describe, naive values are taken as UTC
        now: Reference time, defaults to the current UTC time

    Returns:
        Relative description, "unknown" when no timestamp is given
    """
    if when is None:
        return "unknown"
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)

    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "just now"

    for unit, length in (("year", 365 * 86400), ("month", 30 * 86400), ("day", 86400),
                         ("hour", 3600), ("minute", 60)):
        if seconds >= length:
            count = seconds // length
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


def update_cutoff(installed_at: datetime | None) -> datetime:
    """Timestamp after which an upload counts as recent for a cave.

    Falls back to the epoch when the install time is missing, so every
    upload counts as recent.
    """
    if installed_at is None:
        return EPOCH
    if installed_at.tzinfo is None:
        return installed_at.replace(tzinfo=UTC)
    return installed_at
