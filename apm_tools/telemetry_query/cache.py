"""
In-memory expiring cache for tool results.

Entries are evicted lazily: an expired entry is dropped on the next read of
its key and is simply overwritten by the next set. There is no background
sweep. Reads and writes never suspend, so no locking is needed under asyncio.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .shared.time_utils import MS_PER_DAY, MS_PER_HOUR, now_ms, parse_duration_ms

logger = logging.getLogger("apm_tools.cache")

# Fixed TTLs for alerting-state style queries (ms)
SERVICE_HEALTH_TTL_MS = 30 * 1000
TRACES_TTL_MS = 60 * 1000
OPERATIONS_TTL_MS = 2 * 60 * 1000
MONITORS_TTL_MS = 2 * 60 * 1000


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: int


def make_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Build a deterministic fingerprint from an operation name and parameters.

    Parameters are sorted by name so insertion order does not matter. Values
    that are None are left out, so an unset optional and an explicit None
    share an entry.
    """
    parts = [
        f"{name}={json.dumps(params[name], sort_keys=True, separators=(',', ':'), default=str)}"
        for name in sorted(params)
        if params[name] is not None
    ]
    return f"{prefix}:{'&'.join(parts)}"


def cache_ttl_for(time_range: str) -> int:
    """TTL in ms for trend-style queries: shorter windows go stale sooner."""
    duration = parse_duration_ms(time_range)
    if duration < MS_PER_HOUR:
        return 30 * 1000
    if duration < MS_PER_DAY:
        return 5 * 60 * 1000
    return 15 * 60 * 1000


class CacheStore:
    """Expiring key/value store keyed by fingerprint."""

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or an expired entry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key}")
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl_ms)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        """Number of entries that have not expired."""
        now = self._clock()
        return sum(1 for entry in self._entries.values() if now < entry.expires_at)
