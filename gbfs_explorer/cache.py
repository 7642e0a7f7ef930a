"""In-memory TTL cache with an injectable clock.

Entries are evicted lazily: a read that finds a stale entry drops it and
reports a miss. Refreshes are check-then-act, so concurrent callers may both
miss and both repopulate; the last write wins.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """Cached payload with the clock reading it was stored at."""
    payload: T
    stored_at: float


class TTLCache(Generic[T]):
    """Thread-safe, TTL-bounded key/value store."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic, name: str = "cache") -> None:
        """Initialize the cache with a TTL (seconds) and a clock returning seconds."""
        self.ttl = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry[T]) -> bool:
        """Return True if the entry is older than the TTL."""
        return self._clock() - entry.stored_at >= self.ttl

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the live entry for key, or None if missing/stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                self._entries.pop(key, None)
                logger.debug("Evicted stale entry from %s", self.name)
                return None
            return entry

    def get(self, key: Hashable) -> Optional[T]:
        """Return the cached payload for key, or None if missing/stale."""
        entry = self.get_entry(key)
        return entry.payload if entry else None

    def set(self, key: Hashable, payload: T) -> None:
        """Store payload under key, replacing any previous entry."""
        with self._lock:
            self._entries[key] = CacheEntry(payload=payload, stored_at=self._clock())

    def invalidate(self, key: Hashable) -> None:
        """Drop a single key if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

