"""Tests for the response cache."""

import pytest

from switchlink.services.cache import CacheConfig, ResponseCache


def make_cache(clock, **overrides) -> ResponseCache:
    return ResponseCache(CacheConfig(**overrides), clock=clock)


class TestCacheTTL:
    """Test freshness handling."""

    def test_hit_within_ttl_and_miss_after(self, clock):
        """Test a 2s entry is served at t+1.0 and gone at t+2.1."""
        cache = make_cache(clock, ttl=2.0)
        cache.set("device:1", {"power": "ON"})

        clock.advance(1.0)
        assert cache.get("device:1") == {"power": "ON"}

        clock.advance(1.1)
        assert cache.get("device:1") is None
        assert "device:1" not in cache.keys()

    def test_entry_fresh_at_exact_ttl(self, clock):
        """Test expiry is strictly after ttl."""
        cache = make_cache(clock, ttl=2.0)
        cache.set("k", 1)

        clock.advance(2.0)
        assert cache.get("k") == 1

    def test_has_does_not_touch_stats(self, clock):
        """Test has() reports presence without counting a hit or miss."""
        cache = make_cache(clock)
        cache.set("k", 1)

        assert cache.has("k")
        assert not cache.has("missing")

        stats = cache.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0

    def test_has_removes_expired(self, clock):
        """Test has() drops an expired entry."""
        cache = make_cache(clock, ttl=1.0)
        cache.set("k", 1)
        clock.advance(1.5)

        assert cache.has("k") is False
        assert cache.size == 0

    def test_clear_expired(self, clock):
        """Test clear_expired removes only stale entries."""
        cache = make_cache(clock, ttl=2.0)
        cache.set("old", 1)
        clock.advance(1.5)
        cache.set("new", 2)
        clock.advance(1.0)

        assert cache.clear_expired() == 1
        assert cache.keys() == ["new"]

    def test_update_on_access_refreshes_timestamp(self, clock):
        """Test a read renews the entry when update_on_access is on."""
        cache = make_cache(clock, ttl=2.0, update_on_access=True)
        cache.set("k", 1)

        clock.advance(1.5)
        assert cache.get("k") == 1
        clock.advance(1.5)
        assert cache.get("k") == 1


class TestCacheEviction:
    """Test capacity handling."""

    def test_evicts_oldest_insertion(self, clock):
        """Test FIFO eviction ignores reads by default."""
        cache = make_cache(clock, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")

        cache.set("c", 3)

        assert cache.keys() == ["b", "c"]
        assert cache.get_stats().evictions == 1

    def test_update_on_access_gives_lru(self, clock):
        """Test reads move entries to the back when update_on_access is on."""
        cache = make_cache(clock, max_size=2, update_on_access=True)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")

        cache.set("c", 3)

        assert cache.keys() == ["a", "c"]

    def test_reset_key_counts_as_fresh_insertion(self, clock):
        """Test re-setting a key moves it to the back without evicting."""
        cache = make_cache(clock, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.keys() == ["b", "a"]
        assert cache.get_stats().evictions == 0

        cache.set("c", 3)
        assert cache.keys() == ["a", "c"]

    def test_size_never_exceeds_max(self, clock):
        """Test the store stays bounded."""
        cache = make_cache(clock, max_size=3)
        for i in range(10):
            cache.set(f"k{i}", i)

        assert len(cache) == 3
        assert cache.get_stats().evictions == 7


class TestCacheOperations:
    """Test the remaining cache operations."""

    def test_invalidate_by_substring(self, clock):
        """Test invalidate removes keys containing the pattern."""
        cache = make_cache(clock)
        cache.set("device:1", 1)
        cache.set("device:2", 2)
        cache.set("residence:1", 3)

        assert cache.invalidate("device:") == 2
        assert cache.keys() == ["residence:1"]

    def test_delete(self, clock):
        cache = make_cache(clock)
        cache.set("k", 1)

        assert cache.delete("k") is True
        assert cache.delete("k") is False

    def test_generate_key_sorts_params(self, clock):
        """Test params produce the same key regardless of order."""
        cache = make_cache(clock)
        a = cache.generate_key("/devices", {"b": 2, "a": 1})
        b = cache.generate_key("/devices", {"a": 1, "b": 2})

        assert a == b == "/devices?a=1&b=2"
        assert cache.generate_key("/devices") == "/devices"

    def test_generate_key_hashes_long_keys(self, clock):
        """Test long keys are shortened to a hash."""
        cache = make_cache(clock)
        key = cache.generate_key("/x" * 150)

        assert len(key) == 16

    def test_hit_ratio(self, clock):
        """Test hit ratio accounting."""
        cache = make_cache(clock)
        assert cache.hit_ratio == 0.0

        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        assert cache.hit_ratio == 0.75
        stats = cache.get_stats().to_dict()
        assert stats["hits"] == 3
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["hit_rate"] == 0.75

    def test_clear_keeps_stats_and_reset_drops_them(self, clock):
        cache = make_cache(clock)
        cache.set("k", 1)
        cache.get("k")

        cache.clear()
        assert cache.size == 0
        assert cache.get_stats().hits == 1

        cache.reset()
        assert cache.get_stats().hits == 0

    @pytest.mark.asyncio
    async def test_get_or_set(self, clock):
        """Test get_or_set only calls the factory on a miss."""
        cache = make_cache(clock)
        calls = []

        async def factory():
            calls.append(1)
            return {"id": 1}

        assert await cache.get_or_set("k", factory) == {"id": 1}
        assert await cache.get_or_set("k", factory) == {"id": 1}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_get_or_set_keeps_cached_none(self, clock):
        """Test a stored None is returned without calling the factory again."""
        cache = make_cache(clock)
        calls = []

        async def factory():
            calls.append(1)
            return None

        assert await cache.get_or_set("k", factory) is None
        assert await cache.get_or_set("k", factory) is None
        assert len(calls) == 1
        assert cache.get_stats().hits == 1
