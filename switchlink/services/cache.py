"""
ResponseCache - TTL response cache with bounded size.

Features:
- Insertion-ordered store, oldest entry evicted at capacity
- TTL (Time To Live) checked lazily on read
- Optional update-on-access, which turns FIFO eviction into LRU
- Hit/miss accounting for health reporting
"""

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class CacheConfig:
    """Configuration for the response cache."""

    ttl: float = 2.0  # Seconds an entry stays fresh
    max_size: int = 1000
    update_on_access: bool = False


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    data: T
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at


class ResponseCache(Generic[T]):
    """
    Keyed cache with TTL expiry and bounded capacity.

    Usage:
        cache = ResponseCache(CacheConfig(ttl=2.0))

        data = cache.get("device:42")
        if data is None:
            data = await fetch_device(42)
            cache.set("device:42", data)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self.config = config or CacheConfig()
        self._memory: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    def generate_key(self, url: str, params: dict[str, Any] | None = None) -> str:
        """Generate a cache key from URL and params."""
        if params:
            sorted_params = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
            full_key = f"{url}?{sorted_params}"
        else:
            full_key = url

        # Hash long keys
        if len(full_key) > 200:
            return hashlib.md5(full_key.encode()).hexdigest()[:16]

        return full_key

    def _is_expired(self, entry: CacheEntry[T]) -> bool:
        return entry.age(self._clock()) > self.config.ttl

    def get(self, key: str) -> T | None:
        """
        Get value from cache.

        Returns the cached value if present and fresh, None otherwise.
        Expired entries are removed as a side effect.
        """
        entry = self._memory.get(key)

        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None

        if self._is_expired(entry):
            del self._memory[key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}")

        if self.config.update_on_access:
            entry.stored_at = self._clock()
            self._memory.move_to_end(key)

        return entry.data

    def set(self, key: str, data: T) -> None:
        """Store a value, evicting the oldest entry when at capacity."""
        if key in self._memory:
            # Re-setting a key counts as a fresh insertion
            del self._memory[key]

        while len(self._memory) >= self.config.max_size and self._memory:
            self._evict_oldest()

        self._memory[key] = CacheEntry(data=data, stored_at=self._clock())
        self._log(f"SET: {key[:50]} (TTL: {self.config.ttl}s)")

    def has(self, key: str) -> bool:
        """Check if key exists and is not expired. Does not touch stats."""
        entry = self._memory.get(key)
        if entry is None:
            return False
        if self._is_expired(entry):
            del self._memory[key]
            return False
        return True

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._memory:
            del self._memory[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def invalidate(self, pattern: str) -> int:
        """
        Invalidate all keys containing a substring.

        Returns:
            Number of entries invalidated
        """
        keys_to_delete = [k for k in self._memory if pattern in k]
        for key in keys_to_delete:
            del self._memory[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def clear_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        expired_keys = [k for k, v in self._memory.items() if self._is_expired(v)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._memory)
        self._memory.clear()
        self._log(f"CLEAR: {count} entries removed")

    def reset(self) -> None:
        """Drop all entries and statistics."""
        self._memory.clear()
        self._stats = CacheStats()

    def keys(self) -> list[str]:
        return list(self._memory.keys())

    @property
    def size(self) -> int:
        return len(self._memory)

    def __len__(self) -> int:
        return len(self._memory)

    @property
    def hit_ratio(self) -> float:
        return self._stats.hit_rate

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, or build it with ``factory`` and store it."""
        if self.has(key):
            return self.get(key)

        data = await factory()
        self.set(key, data)
        return data

    def _evict_oldest(self) -> None:
        """Evict the oldest entry (front of the insertion order)."""
        oldest_key, _ = self._memory.popitem(last=False)
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def reset_stats(self) -> None:
        self._stats = CacheStats()

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self.config.max_size
        self._stats.ttl = self.config.ttl
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResponseCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0
    ttl: float = 0.0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "ttl": self.ttl,
            "hit_rate": round(self.hit_rate, 4),
        }
