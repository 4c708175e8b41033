"""
Formatting utilities for output data.
"""

from typing import Any, Optional

from .filters import NS_PER_MS


def ns_to_ms(ns: float) -> float:
    """Convert backend nanoseconds to milliseconds, rounded to 2 decimals."""
    return round(float(ns) / NS_PER_MS, 2)


def as_number(value: Any) -> Optional[float]:
    """Coerce a response value to float. Booleans, None and junk give None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def format_latency(ms: float) -> str:
    """Format latency in human-readable form."""
    if ms < 1:
        return f"{ms:.2f}ms"
    elif ms < 1000:
        return f"{ms:.0f}ms"
    elif ms < 60000:
        return f"{ms/1000:.1f}s"
    else:
        return f"{ms/60000:.1f}m"


def latest_point_value(series: list[dict[str, Any]] | None) -> Optional[float]:
    """Latest value of the first series of a metrics response, or None."""
    if not isinstance(series, list) or not series or not isinstance(series[0], dict):
        return None
    pointlist = series[0].get("pointlist") or []
    for point in reversed(pointlist):
        if isinstance(point, (list, tuple)) and len(point) >= 2:
            value = as_number(point[1])
            if value is not None:
                return value
    return None
