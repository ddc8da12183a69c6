"""
Cache Package.

Bounded in-memory caches for hot lookups.

Components:
- LRUCache: LRU eviction with per-entry TTL and background sweep
- CacheManager: Registry with consolidated metrics and lifecycle
"""

from cache.lru_cache import CacheEntry, LRUCache
from cache.manager import CacheManager

__all__ = ["CacheEntry", "LRUCache", "CacheManager"]
