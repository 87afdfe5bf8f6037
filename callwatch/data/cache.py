"""Time-bounded cache for fetched quotes."""
import time
from collections.abc import Callable, Hashable
from typing import Any


class QuoteCache:
    """Cache for quotes keyed by (symbol, exchange, as_of).

    Owned by a price source and shared by reference. Entries expire after
    ``ttl_seconds``; a TTL of zero disables caching.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize empty cache.

        Args:
            ttl_seconds: How long an entry stays valid.
            clock: Monotonic time source, injectable for tests.
        """
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        """Get a cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value."""
        if self._ttl <= 0:
            return
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        """Drop one entry."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear all cached data."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
