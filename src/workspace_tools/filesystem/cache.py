"""
Time-bounded cache for search and duplicate detection results.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A memoized result and its creation time (monotonic seconds)."""

    value: Any
    created: float


class SearchCache:
    """
    TTL cache keyed by a canonical request signature.

    Expired entries are evicted lazily on lookup, or in bulk by cleanup().
    The cache only saves work: a miss recomputes and a racing duplicate
    recompute just overwrites an equal value.

    Usage:
        cache = SearchCache(ttl_ms=300_000)

        key = SearchCache.generate_key("search_files", {"pattern": "*.py"})
        result = cache.get(key)
        if result is None:
            result = compute()
            cache.set(key, result)
    """

    def __init__(
        self,
        ttl_ms: int = 300_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl_ms: Time-to-live of entries in milliseconds
            clock: Monotonic time source in seconds
        """
        self.ttl_ms = ttl_ms
        self._ttl = ttl_ms / 1000.0
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() - entry.created > self._ttl:
                del self._entries[key]
                return None

            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created=self._clock())

    def cleanup(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, entry in self._entries.items()
                if now - entry.created > self._ttl
            ]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Search cache cleanup removed {len(expired)} entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def generate_key(operation: str, params: Mapping[str, Any]) -> str:
        """
        Build a cache key independent of parameter order.

        Args:
            operation: Operation name
            params: Logical request parameters

        Returns:
            "operation:name1:value1,name2:value2,..." with names sorted
        """
        parts = [f"{name}:{_format_value(params[name])}" for name in sorted(params)]
        return f"{operation}:{','.join(parts)}"


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_format_value(v) for v in value) + "]"
    return str(value)
