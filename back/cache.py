"""
TTL + LRU in-memory cache for API responses.

Caches scraping results to avoid hitting the source site on every request.
Each entry expires after a TTL (seconds); when the cache is full the least
recently used entry is evicted to make room.

Expired entries are dropped lazily on read. `run_sweeper()` can also purge
them on a timer so entries that are never read again don't pin memory.
"""

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        # ttl <= 0 means "expired as soon as stored"
        return now > self.expires_at or self.expires_at <= self.created_at


class ResponseCache:
    """Bounded key/value store with per-entry expiry and LRU eviction."""

    def __init__(
        self,
        capacity: int = 1000,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        # Insertion order doubles as LRU order: first = least recently used
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        """Get a cached value if it exists and hasn't expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Cache a value, evicting the least recently used entry if full."""
        if ttl is None:
            ttl = self.default_ttl
        now = self._clock()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(key, value, now, now + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate(self, prefix: str) -> int:
        """Remove all cache entries matching a prefix."""
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        """Clear the entire cache."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            size = sum(1 for e in self._entries.values() if not e.is_expired(now))
            return {
                "size": size,
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "default_ttl": self.default_ttl,
            }

    def __len__(self) -> int:
        return self.stats()["size"]

    def __contains__(self, key: str) -> bool:
        # Membership test without touching LRU order or hit counters
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    async def run_sweeper(self, interval: float = 60) -> None:
        """Periodically purge expired entries. Runs until cancelled."""
        while True:
            await asyncio.sleep(interval)
            cleaned = self.sweep()
            if cleaned:
                print(f"[cache] Cleaned {cleaned} expired entries")
