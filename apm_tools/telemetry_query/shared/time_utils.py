"""
Time range parsing and handling utilities.
"""

import re
import time
from dataclasses import dataclass

from ..errors import FormatError

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

_UNIT_MS = {
    "m": MS_PER_MINUTE,
    "h": MS_PER_HOUR,
    "d": MS_PER_DAY,
}

_TIME_RANGE_RE = re.compile(r"^(\d+)(m|h|d)$")


@dataclass(frozen=True)
class TimeRange:
    """Absolute query window in epoch milliseconds."""

    from_ms: int
    to_ms: int

    @property
    def duration_ms(self) -> int:
        return self.to_ms - self.from_ms

    @property
    def from_seconds(self) -> int:
        return self.from_ms // 1000

    @property
    def to_seconds(self) -> int:
        return self.to_ms // 1000


def now_ms() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_duration_ms(expression: str) -> int:
    """Parse '<integer><unit>' (m, h or d) into a duration in milliseconds.

    Raises:
        FormatError: If the expression does not match the grammar or is zero.
    """
    match = _TIME_RANGE_RE.match(expression.strip()) if isinstance(expression, str) else None
    if not match:
        raise FormatError(str(expression))

    value = int(match.group(1))
    unit = match.group(2)
    unit_ms = _UNIT_MS.get(unit)
    if unit_ms is None:
        raise FormatError(expression)

    duration = value * unit_ms
    if duration <= 0:
        raise FormatError(expression)
    return duration


def parse_time_range(expression: str, now: int | None = None) -> TimeRange:
    """Resolve a relative range expression ('15m', '24h', '7d') ending at now.

    Args:
        expression: Relative range in the form <integer>(m|h|d).
        now: Wall clock reading in epoch ms. Defaults to the current time.

    Returns:
        TimeRange with to_ms == now and to_ms - from_ms == duration.
    """
    duration = parse_duration_ms(expression)
    end = now_ms() if now is None else now
    return TimeRange(from_ms=end - duration, to_ms=end)
