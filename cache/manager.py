"""
Cache - Cache Manager.

============================================================
PURPOSE
============================================================
Registry of named caches owned by the host process.

- Aggregates metrics across every registered cache
- Periodically logs a consolidated summary
- Triggers cleanup across all caches on demand
- Starts and stops every cache sweep as a unit

Constructed explicitly and passed to consumers; there is no
module-level instance.

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from cache.lru_cache import LRUCache


logger = logging.getLogger(__name__)


DEFAULT_SUMMARY_INTERVAL_SECONDS = 900.0

# Rough per-entry footprint used for the memory estimate
ESTIMATED_BYTES_PER_ENTRY = 1024


class CacheManager:
    """
    Registry for LRUCache instances.

    Usage:
        manager = CacheManager()
        classifier_cache = manager.create("classifier", max_size=500)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(self, summary_interval: float = DEFAULT_SUMMARY_INTERVAL_SECONDS):
        self._caches: Dict[str, LRUCache] = {}
        self._summary_interval = summary_interval
        self._summary_task: Optional[asyncio.Task] = None

    # =========================================================
    # REGISTRATION
    # =========================================================

    def register(self, cache: LRUCache) -> LRUCache:
        """Register a cache under its name."""
        if cache.name in self._caches:
            raise ValueError(f"Cache already registered: {cache.name}")
        self._caches[cache.name] = cache
        logger.info(f"Registered cache '{cache.name}' (max_size={cache.max_size})")
        return cache

    def create(self, name: str, **kwargs) -> LRUCache:
        """Create and register a new cache."""
        return self.register(LRUCache(name, **kwargs))

    def unregister(self, name: str) -> Optional[LRUCache]:
        cache = self._caches.pop(name, None)
        if cache is not None:
            logger.info(f"Unregistered cache '{name}'")
        return cache

    def get(self, name: str) -> Optional[LRUCache]:
        return self._caches.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._caches.keys())

    # =========================================================
    # METRICS
    # =========================================================

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Metrics of every registered cache, keyed by name."""
        return {name: cache.get_metrics() for name, cache in self._caches.items()}

    def get_total_memory_estimate(self) -> Dict[str, Any]:
        """Global entry count, capacity and estimated footprint."""
        total_entries = sum(cache.size for cache in self._caches.values())
        total_capacity = sum(cache.max_size for cache in self._caches.values())

        return {
            "total_entries": total_entries,
            "total_capacity": total_capacity,
            "utilization": (
                round(total_entries / total_capacity, 4) if total_capacity else 0.0
            ),
            "estimated_bytes": total_entries * ESTIMATED_BYTES_PER_ENTRY,
        }

    def cleanup_all(self) -> int:
        """Sweep expired entries from every cache."""
        removed = sum(cache.cleanup() for cache in self._caches.values())
        if removed:
            logger.info(f"Cleanup removed {removed} expired entries across caches")
        return removed

    def log_metrics_summary(self) -> None:
        """Log one consolidated line per cache plus the global estimate."""
        if not self._caches:
            return

        for name, metrics in self.get_all_metrics().items():
            logger.info(
                f"Cache '{name}': size={metrics['size']}/{metrics['max_size']} "
                f"hit_rate={metrics['hit_rate']} evictions={metrics['evictions']} "
                f"expired={metrics['expired']}"
            )

        memory = self.get_total_memory_estimate()
        logger.info(
            f"Caches total: {memory['total_entries']} entries, "
            f"utilization={memory['utilization']:.1%}, "
            f"~{memory['estimated_bytes'] / 1024:.1f} KiB"
        )

    # =========================================================
    # LIFECYCLE
    # =========================================================

    @property
    def is_running(self) -> bool:
        return self._summary_task is not None and not self._summary_task.done()

    async def start(self) -> None:
        """Start every cache sweep and the summary loop."""
        if self.is_running:
            return
        for cache in self._caches.values():
            cache.start()
        self._summary_task = asyncio.create_task(
            self._summary_loop(), name="cache-manager-summary"
        )
        logger.info(f"Cache manager started ({len(self._caches)} caches)")

    async def stop(self) -> None:
        """Stop the summary loop and every cache sweep."""
        if self._summary_task is not None:
            self._summary_task.cancel()
            try:
                await self._summary_task
            except asyncio.CancelledError:
                pass
            self._summary_task = None

        for cache in self._caches.values():
            await cache.stop()
        logger.info("Cache manager stopped")

    async def _summary_loop(self) -> None:
        while True:
            await asyncio.sleep(self._summary_interval)
            self.log_metrics_summary()
