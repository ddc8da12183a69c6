"""
Tests for the TTL/LRU cache and the cache manager.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from cache import CacheManager, LRUCache
from core.clock import MockClock


@pytest.fixture
def clock():
    return MockClock(datetime(2024, 1, 1, 10, 0, 0))


# ============================================================
# LRU BEHAVIOUR
# ============================================================

class TestLRUEviction:

    def test_inserting_past_capacity_evicts_first_key(self, clock):
        cache = LRUCache("test", max_size=3, clock=clock)
        for key in ("a", "b", "c", "d"):
            cache.set(key, key.upper())

        assert cache.keys() == ["b", "c", "d"]
        assert cache.get("a") is None
        assert cache.get_metrics()["evictions"] == 1

    def test_get_refreshes_recency(self, clock):
        cache = LRUCache("test", max_size=3, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") == 1
        cache.set("d", 4)

        assert cache.keys() == ["c", "a", "d"]
        assert cache.get("b") is None

    def test_get_of_middle_entry_keeps_boundary_order(self, clock):
        cache = LRUCache("test", max_size=3, clock=clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)

        cache.get("b")
        cache.set("d", "d")

        assert "a" not in cache.keys()
        assert cache.keys() == ["c", "b", "d"]

    def test_overwrite_does_not_evict(self, clock):
        cache = LRUCache("test", max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.size == 2
        assert cache.get("a") == 10
        assert cache.get_metrics()["evictions"] == 0

    def test_has_does_not_count_as_lookup(self, clock):
        cache = LRUCache("test", clock=clock)
        cache.set("a", 1)

        assert cache.has("a")
        assert not cache.has("missing")
        metrics = cache.get_metrics()
        assert metrics["hits"] == 0
        assert metrics["misses"] == 0

    def test_set_max_size_shrinks(self, clock):
        cache = LRUCache("test", max_size=4, clock=clock)
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)

        cache.set_max_size(2)

        assert cache.keys() == ["c", "d"]
        assert cache.utilization() == 1.0

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            LRUCache("test", max_size=0)


# ============================================================
# EXPIRY
# ============================================================

class TestExpiry:

    def test_short_ttl_misses_after_delay(self, clock):
        cache = LRUCache("test", clock=clock)
        cache.set("k", "v", ttl=0.001)

        clock.advance(seconds=0.01)

        assert cache.get("k") is None
        metrics = cache.get_metrics()
        assert metrics["expired"] == 1
        assert metrics["misses"] == 1

    def test_cleanup_excludes_expired_from_size(self, clock):
        cache = LRUCache("test", clock=clock)
        cache.set("short", 1, ttl=0.001)
        cache.set("long", 2, ttl=60)

        clock.advance(seconds=0.01)
        removed = cache.cleanup()

        assert removed == 1
        assert cache.size == 1
        assert cache.keys() == ["long"]

    def test_entry_alive_until_expiry_instant(self, clock):
        cache = LRUCache("test", clock=clock)
        cache.set("k", "v", ttl=10)

        clock.advance(seconds=10)

        assert cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_background_sweep_removes_expired(self, clock):
        cache = LRUCache("test", sweep_interval=0.01, clock=clock)
        cache.set("k", "v", ttl=0.001)
        clock.advance(seconds=1)

        cache.start()
        try:
            await asyncio.sleep(0.05)
        finally:
            await cache.stop()

        assert cache.size == 0
        assert not cache.is_running


# ============================================================
# METRICS AND HELPERS
# ============================================================

class TestMetrics:

    def test_hit_rate_formatting(self, clock):
        cache = LRUCache("test", clock=clock)
        assert cache.get_metrics()["hit_rate"] == "0%"

        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        assert cache.get_metrics()["hit_rate"] == "66.67%"

    def test_clear_resets_metrics(self, clock):
        cache = LRUCache("test", clock=clock)
        cache.set("a", 1)
        cache.get("a")

        cache.clear()

        metrics = cache.get_metrics()
        assert metrics["size"] == 0
        assert metrics["hits"] == 0

    @pytest.mark.asyncio
    async def test_get_or_load_caches_loaded_value(self, clock):
        cache = LRUCache("test", clock=clock)
        loader = AsyncMock(return_value="loaded")

        first = await cache.get_or_load("k", loader)
        second = await cache.get_or_load("k", loader)

        assert first == second == "loaded"
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_or_load_propagates_errors(self, clock):
        cache = LRUCache("test", clock=clock)
        loader = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", loader)
        assert cache.size == 0


# ============================================================
# CACHE MANAGER
# ============================================================

class TestCacheManager:

    def test_register_rejects_duplicates(self, clock):
        manager = CacheManager()
        manager.create("a", clock=clock)

        with pytest.raises(ValueError):
            manager.create("a", clock=clock)

    def test_totals_across_caches(self, clock):
        manager = CacheManager()
        first = manager.create("first", max_size=10, clock=clock)
        second = manager.create("second", max_size=10, clock=clock)
        first.set("a", 1)
        second.set("b", 2)
        second.set("c", 3)

        memory = manager.get_total_memory_estimate()

        assert memory["total_entries"] == 3
        assert memory["total_capacity"] == 20
        assert memory["utilization"] == 0.15
        assert memory["estimated_bytes"] == 3 * 1024
        assert set(manager.get_all_metrics()) == {"first", "second"}

    def test_cleanup_all(self, clock):
        manager = CacheManager()
        cache = manager.create("a", clock=clock)
        cache.set("k", 1, ttl=0.001)
        clock.advance(seconds=1)

        assert manager.cleanup_all() == 1

    @pytest.mark.asyncio
    async def test_start_and_stop_owns_every_task(self, clock):
        manager = CacheManager(summary_interval=0.01)
        cache = manager.create("a", sweep_interval=0.01, clock=clock)

        await manager.start()
        assert manager.is_running
        assert cache.is_running

        await manager.stop()
        assert not manager.is_running
        assert not cache.is_running
