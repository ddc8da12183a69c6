"""
Cache - LRU Cache with TTL.

============================================================
PURPOSE
============================================================
Generic bounded key-value cache used wherever a hot lookup
must be bounded in memory (classifier verdicts, external
search results, ...).

- Least-recently-used eviction at a fixed capacity
- Per-entry expiry with a default time-to-live
- Lazy expiry on access plus a periodic background sweep
- Hit/miss/eviction/expiry metrics

============================================================
FAILURE SEMANTICS
============================================================
No operation raises in the ordinary sense. Absence is a miss,
never an error.

============================================================
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

from core.clock import ClockProtocol, get_clock


logger = logging.getLogger(__name__)


V = TypeVar("V")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with absolute expiry."""

    value: V
    expires_at: float
    last_accessed: float


class LRUCache(Generic[V]):
    """
    Bounded LRU cache with TTL eviction.

    Insertion order of the backing OrderedDict is the recency
    order: the first item is the least recently used.

    Usage:
        cache = LRUCache("classifier", max_size=500, default_ttl=600)
        cache.set("key", value)
        value = cache.get("key")
    """

    def __init__(
        self,
        name: str,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Optional[ClockProtocol] = None,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")

        self._name = name
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock or get_clock()

        self._entries: "OrderedDict[Hashable, CacheEntry[V]]" = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired = 0

        self._sweep_task: Optional[asyncio.Task] = None

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================
    # CORE OPERATIONS
    # =========================================================

    def get(self, key: Hashable) -> Optional[V]:
        """
        Get a value, or None on miss.

        A hit moves the entry to the most-recently-used end.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        now = self._clock.timestamp()
        if self._is_expired(entry, now):
            del self._entries[key]
            self._expired += 1
            self._misses += 1
            return None

        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: Hashable, value: V, ttl: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: Time-to-live in seconds (default_ttl when None)
        """
        now = self._clock.timestamp()
        ttl_seconds = ttl if ttl is not None else self._default_ttl

        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[key] = CacheEntry(
            value=value,
            expires_at=now + ttl_seconds,
            last_accessed=now,
        )

    def has(self, key: Hashable) -> bool:
        """Check for a live entry. Touches recency, does not count as a lookup."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        now = self._clock.timestamp()
        if self._is_expired(entry, now):
            del self._entries[key]
            self._expired += 1
            return False

        entry.last_accessed = now
        self._entries.move_to_end(key)
        return True

    def delete(self, key: Hashable) -> bool:
        """Remove an entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        self._entries.clear()
        self.reset_metrics()
        logger.debug(f"Cache '{self._name}' cleared")

    def keys(self) -> List[Hashable]:
        """Keys in recency order, least recently used first."""
        return list(self._entries.keys())

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[V]],
        ttl: Optional[float] = None,
    ) -> V:
        """
        Get a value, loading and caching it on miss.

        Loader errors propagate and nothing is cached.
        """
        value = self.get(key)
        if value is not None:
            return value

        value = await loader()
        if value is not None:
            self.set(key, value, ttl)
        return value

    # =========================================================
    # MAINTENANCE
    # =========================================================

    def cleanup(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock.timestamp()
        expired_keys = [
            key for key, entry in self._entries.items()
            if self._is_expired(entry, now)
        ]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            self._expired += len(expired_keys)
            logger.debug(
                f"Cache '{self._name}' sweep removed {len(expired_keys)} expired entries"
            )
        return len(expired_keys)

    def set_max_size(self, max_size: int) -> None:
        """Change capacity, evicting least recently used entries if needed."""
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        while len(self._entries) > self._max_size:
            self._evict_oldest()

    def utilization(self) -> float:
        """Fraction of capacity in use (0-1)."""
        return len(self._entries) / self._max_size

    def reset_metrics(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired = 0

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of cache counters."""
        lookups = self._hits + self._misses
        if lookups == 0:
            hit_rate = "0%"
        else:
            hit_rate = f"{self._hits / lookups * 100:.2f}%"

        return {
            "name": self._name,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expired": self._expired,
            "size": len(self._entries),
            "max_size": self._max_size,
            "hit_rate": hit_rate,
        }

    # =========================================================
    # BACKGROUND SWEEP
    # =========================================================

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the periodic expiry sweep. Requires a running loop."""
        if self.is_running:
            return
        self._sweep_task = asyncio.create_task(
            self._sweep_loop(), name=f"cache-sweep-{self._name}"
        )
        logger.debug(f"Cache '{self._name}' sweep started ({self._sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        logger.debug(f"Cache '{self._name}' sweep stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.cleanup()

    # =========================================================
    # INTERNALS
    # =========================================================

    @staticmethod
    def _is_expired(entry: CacheEntry, now: float) -> bool:
        return entry.expires_at < now

    def _evict_oldest(self) -> None:
        key, _ = self._entries.popitem(last=False)
        self._evictions += 1
        logger.debug(f"Cache '{self._name}' evicted key: {key!r}")
