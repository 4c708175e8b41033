"""
Shared utilities for the APM tools.

Common functions used across multiple tool implementations.
"""

from datetime import datetime, timezone
from typing import Any


def format_timestamp(ts: str | int | float) -> str:
    """Format a timestamp as ISO-8601 UTC with millisecond precision and a 'Z' suffix.

    Args:
        ts: Timestamp as ISO string, or unix epoch in seconds, milliseconds or nanoseconds.

    Returns:
        ISO-8601 string, e.g. '2025-01-01T12:00:00.000Z'. Unparseable
        strings are returned unchanged.
    """
    if isinstance(ts, str):
        try:
            dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return ts
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
    elif isinstance(ts, (int, float)):
        if ts > 1e17:  # Nanoseconds (span start)
            ts = ts / 1e9
        elif ts > 1e11:  # Likely milliseconds
            ts = ts / 1000
        dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    else:
        return str(ts)

    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc).isoformat())


def truncate_string(s: str, max_length: int = 500, suffix: str = "...") -> str:
    """Truncate a string to a maximum length.

    Args:
        s: String to truncate.
        max_length: Maximum length before truncation.
        suffix: Suffix to add when truncated.

    Returns:
        Original or truncated string.
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def safe_get(data: Any, *keys: str | int, default: Any = None) -> Any:
    """Safely get a nested value from dicts and lists.

    Args:
        data: Structure to traverse.
        *keys: Sequence of keys (dict) or indexes (list) to follow.
        default: Default value if the path doesn't exist.

    Returns:
        Value at the path, or default if not found.

    Example:
        safe_get(span, "attributes", "attributes", "resource_name", default="unknown")
    """
    result = data
    for key in keys:
        if isinstance(result, dict):
            if key not in result:
                return default
            result = result[key]
        elif isinstance(result, list) and isinstance(key, int):
            if -len(result) <= key < len(result):
                result = result[key]
            else:
                return default
        else:
            return default
    return default if result is None else result
