"""
Unit tests for MemoryCache.
"""

import asyncio

import pytest

from service_chat.app.caching.memory_cache import MemoryCache
from shared.test_helpers import FakeClock


class TestMemoryCache:
    """Test cases for MemoryCache."""

    @pytest.fixture
    def clock(self):
        """Manually advanced clock."""
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        """Create MemoryCache instance."""
        return MemoryCache(max_size=10, default_ttl=300, clock=clock)

    def test_get_after_set(self, cache):
        """Test a fresh entry is returned."""
        payload = [{"id": "s1", "title": "Hello"}]
        cache.set("user_sessions:u1:1:20", payload, 30)

        assert cache.get("user_sessions:u1:1:20") is payload

    def test_get_missing_key(self, cache):
        """Test a key that was never set is absent."""
        assert cache.get("nope") is None

    def test_entry_expires_after_ttl(self, cache, clock):
        """Test entries are absent once their TTL has elapsed."""
        cache.set("k", "v", 30)

        clock.advance(29.9)
        assert cache.get("k") == "v"

        clock.advance(0.2)
        assert cache.get("k") is None

    def test_entry_absent_exactly_at_expiry(self, cache, clock):
        """Test the expiry instant itself counts as expired."""
        cache.set("k", "v", 10)
        clock.advance(10)

        assert cache.get("k") is None

    def test_expired_entry_purged_on_get(self, cache, clock):
        """Test reading an expired entry removes it from the store."""
        cache.set("k", "v", 1)
        clock.advance(2)

        assert len(cache) == 1
        cache.get("k")
        assert len(cache) == 0

    def test_default_ttl_used(self, cache, clock):
        """Test set without a TTL uses the configured default."""
        cache.set("k", "v")

        clock.advance(299)
        assert cache.get("k") == "v"
        clock.advance(2)
        assert cache.get("k") is None

    def test_overwrite_replaces_value_and_expiry(self, cache, clock):
        """Test set on an existing key resets value and TTL window."""
        cache.set("k", "old", 10)
        clock.advance(8)
        cache.set("k", "new", 10)

        clock.advance(5)
        assert cache.get("k") == "new"
        assert len(cache) == 1

        clock.advance(6)
        assert cache.get("k") is None

    def test_delete(self, cache):
        """Test delete removes exactly one entry."""
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)

        assert cache.delete("a") is True
        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_delete_missing_key_is_noop(self, cache):
        """Test deleting an absent key neither raises nor changes the store."""
        cache.set("a", 1, 60)

        assert cache.delete("missing") is False
        assert cache.get_stats()["size"] == 1
        assert cache.get("a") == 1

    def test_clear(self, cache):
        """Test clear empties the store."""
        for i in range(5):
            cache.set(f"k{i}", i, 60, tags=["t"])

        cache.clear()

        assert cache.get_stats()["size"] == 0
        for i in range(5):
            assert cache.get(f"k{i}") is None
        assert cache.invalidate_tag("t") == 0

    def test_clear_and_delete_are_idempotent(self, cache):
        """Test repeated clear/delete/cleanup calls are harmless."""
        cache.clear()
        cache.clear()
        cache.delete("x")
        cache.delete("x")
        assert cache.cleanup() == 0
        assert cache.cleanup() == 0

    def test_cleanup_removes_only_expired(self, cache, clock):
        """Test cleanup sweeps expired entries and keeps live ones."""
        cache.set("short", "s", 0.001)
        cache.set("long", "l", 60)
        clock.advance(0.01)

        removed = cache.cleanup()

        assert removed == 1
        assert cache.get_stats()["size"] == 1
        assert cache.get("long") == "l"
        assert cache.get("short") is None

    @pytest.mark.asyncio
    async def test_cleanup_with_real_clock(self):
        """Test cleanup against wall-clock expiry."""
        cache = MemoryCache()
        cache.set("short", "s", 0.001)
        cache.set("long", "l", 60)

        await asyncio.sleep(0.05)
        cache.cleanup()

        assert cache.get_stats()["size"] == 1
        assert cache.get("long") == "l"

    def test_stats_lists_live_keys(self, cache, clock):
        """Test stats report size, capacity and unexpired keys."""
        cache.set("a", 1, 1)
        cache.set("b", 2, 60)
        clock.advance(5)

        stats = cache.get_stats()

        assert stats["max_size"] == 10
        assert stats["keys"] == ["b"]
        assert stats["size"] == 1

    def test_evicts_oldest_when_full(self, clock):
        """Test the oldest inserted entry makes room at capacity."""
        cache = MemoryCache(max_size=3, clock=clock)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.set("c", 3, 60)

        cache.set("d", 4, 60)

        assert cache.get("a") is None
        assert [cache.get(k) for k in ("b", "c", "d")] == [2, 3, 4]
        assert len(cache) == 3

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        """Test overwriting a key in a full cache keeps the other entries."""
        cache = MemoryCache(max_size=2, clock=clock)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)

        cache.set("a", 10, 60)

        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_invalid_max_size(self):
        """Test a non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)

    def test_delete_prefix(self, cache):
        """Test prefix deletion removes the family only."""
        cache.set("user_sessions:u1:1:20", [], 60)
        cache.set("user_sessions:u1:2:20", [], 60)
        cache.set("user_sessions:u10:1:20", [], 60)

        assert cache.delete_prefix("user_sessions:u1:") == 2
        assert cache.get("user_sessions:u10:1:20") == []

    def test_invalidate_tag(self, cache):
        """Test tag invalidation removes every entry stored under the tag."""
        cache.set("x1", 1, 60, tags=["user_sessions:u1"])
        cache.set("x2", 2, 60, tags=["user_sessions:u1", "other"])
        cache.set("x3", 3, 60, tags=["other"])

        assert cache.invalidate_tag("user_sessions:u1") == 2
        assert cache.get("x3") == 3
        assert cache.invalidate_tag("other") == 1
        assert len(cache) == 0

    def test_overwrite_replaces_tags(self, cache):
        """Test re-setting a key drops it from its previous tags."""
        cache.set("k", 1, 60, tags=["old"])
        cache.set("k", 2, 60, tags=["new"])

        assert cache.invalidate_tag("old") == 0
        assert cache.get("k") == 2
        assert cache.invalidate_tag("new") == 1

    def test_contains_respects_expiry(self, cache, clock):
        """Test membership ignores expired entries."""
        cache.set("k", "v", 1)
        assert "k" in cache

        clock.advance(2)
        assert "k" not in cache

    def test_set_if_current_stores_with_unchanged_generation(self, cache):
        """Test a snapshot taken before a fetch still allows the write."""
        generation = cache.generation(["user_sessions:u1"])
        cache.invalidate_tag("other")

        assert cache.set_if_current("k", "v", 60, ["user_sessions:u1"], generation) is True
        assert cache.get("k") == "v"
        assert cache.invalidate_tag("user_sessions:u1") == 1

    def test_set_if_current_refused_after_tag_invalidation(self, cache):
        """Test a write is dropped when its tag was invalidated meanwhile."""
        generation = cache.generation(["user_sessions:u1"])
        cache.invalidate_tag("user_sessions:u1")

        assert cache.set_if_current("k", "stale", 60, ["user_sessions:u1"], generation) is False
        assert cache.get("k") is None

    def test_set_if_current_refused_after_clear(self, cache):
        """Test clear makes every outstanding snapshot stale."""
        generation = cache.generation(["user_sessions:u1"])
        cache.clear()

        assert cache.set_if_current("k", "stale", 60, ["user_sessions:u1"], generation) is False
        assert "k" not in cache

    def test_cleanup_bounds_generation_counters(self, clock):
        """Test cleanup drops counters once they outnumber the capacity."""
        cache = MemoryCache(max_size=2, clock=clock)
        generation = cache.generation(["t0"])
        for i in range(3):
            cache.invalidate_tag(f"t{i}")
        assert cache.set_if_current("k", "stale", 60, ["t0"], generation) is False

        cache.cleanup()

        assert cache._generations == {}
        assert cache.set_if_current("k", "stale", 60, ["t0"], generation) is False
        assert cache.set_if_current("k", "v", 60, ["t0"], cache.generation(["t0"])) is True
