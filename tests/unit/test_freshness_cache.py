"""
Unit tests for the freshness cache and the read-through helper.
"""

import asyncio

import pytest

from lifecycle.cache import refresh
from lifecycle.cache.freshness import FreshnessCache
from lifecycle.cache.refresh import read_through
from lifecycle.storage.base import StorageError
from tests.conftest import FIXED_NOW, FixedClock


@pytest.fixture
def cache(clock):
    return FreshnessCache(max_entries=3, clock=clock)


# ============================================================================
# FreshnessCache
# ============================================================================


class TestFreshnessCache:
    """Entry lifetime: fresh, stale, absent."""

    def test_fresh_hit(self, cache):
        cache.set_with_meta("k", {"a": 1}, ttl_seconds=300, stale_after_seconds=300)
        hit = cache.get_with_meta("k")

        assert hit.value == {"a": 1}
        assert hit.is_stale is False
        assert hit.cached_at == FIXED_NOW

    def test_stale_after_threshold(self, cache, clock):
        cache.set_with_meta("k", 1, ttl_seconds=300, stale_after_seconds=300)
        clock.advance(seconds=301)
        hit = cache.get_with_meta("k")

        assert hit.value == 1
        assert hit.is_stale is True
        assert hit.metadata()["serving_cached"] is True
        assert hit.metadata()["age_seconds"] == 301.0

    def test_absent_after_stale_period(self, cache, clock):
        cache.set_with_meta("k", 1, ttl_seconds=300, stale_after_seconds=300)
        clock.advance(seconds=601)
        assert cache.get_with_meta("k") is None

    def test_missing_key(self, cache):
        assert cache.get_with_meta("nope") is None
        assert cache.peek_last_known("nope") is None

    def test_peek_ignores_expiry(self, cache, clock):
        cache.set_with_meta("k", 1, ttl_seconds=10, stale_after_seconds=10)
        clock.advance(hours=2)
        last = cache.peek_last_known("k")
        assert last.value == 1
        assert last.is_stale is True

    def test_oldest_entry_evicted(self, cache):
        for key in ["a", "b", "c", "d"]:
            cache.set_with_meta(key, key, 300, 300)
        assert len(cache) == 3
        assert cache.get_with_meta("a") is None
        assert cache.get_with_meta("d").value == "d"

    def test_rewrite_replaces_entry(self, cache, clock):
        cache.set_with_meta("k", 1, 300, 300)
        clock.advance(seconds=400)
        cache.set_with_meta("k", 2, 300, 300)
        hit = cache.get_with_meta("k")
        assert (hit.value, hit.is_stale) == (2, False)

    def test_clear_by_prefix(self, cache):
        cache.set_with_meta("ticket-lifecycle:1", 1, 300, 300)
        cache.set_with_meta("ticket-lifecycle:2", 2, 300, 300)
        cache.set_with_meta("closure-counts:1", 3, 300, 300)

        assert cache.clear("ticket-lifecycle:") == 2
        assert len(cache) == 1
        assert cache.clear() == 1

    def test_delete(self, cache):
        cache.set_with_meta("k", 1, 300, 300)
        assert cache.delete("k") is True
        assert cache.delete("k") is False


# ============================================================================
# read_through
# ============================================================================


class TestReadThrough:
    """Consumer-side behaviour on hits, misses, and failing loads."""

    def test_miss_loads_and_stores(self, cache):
        calls = []

        def loader():
            calls.append(1)
            return [1, 2]

        value, meta = asyncio.run(read_through(cache, "k", loader, 300, 300))
        again, _ = asyncio.run(read_through(cache, "k", loader, 300, 300))

        assert value == again == [1, 2]
        assert meta["is_stale"] is False
        assert len(calls) == 1

    def test_stale_hit_served_and_refreshed(self, cache, clock):
        cache.set_with_meta("k", "old", 300, 300)
        clock.advance(seconds=301)

        async def scenario():
            value, meta = await read_through(cache, "k", lambda: "new", 300, 300)
            await asyncio.gather(*list(refresh._background_tasks))
            return value, meta

        value, meta = asyncio.run(scenario())

        assert value == "old"
        assert meta["is_stale"] is True
        hit = cache.get_with_meta("k")
        assert (hit.value, hit.is_stale) == ("new", False)

    def test_failed_refresh_keeps_stale_value(self, cache, clock):
        cache.set_with_meta("k", "old", 300, 300)
        clock.advance(seconds=301)

        def broken():
            raise StorageError("database locked")

        async def scenario():
            await read_through(cache, "k", broken, 300, 300)
            await asyncio.gather(*list(refresh._background_tasks))

        asyncio.run(scenario())
        assert cache.get_with_meta("k").value == "old"

    def test_failed_load_falls_back_to_last_known(self, cache, clock):
        cache.set_with_meta("k", "old", 300, 300)
        clock.advance(seconds=900)

        def broken():
            raise StorageError("database locked")

        value, meta = asyncio.run(read_through(cache, "k", broken, 300, 300))
        assert value == "old"
        assert meta["serving_cached"] is True

    def test_failed_load_without_history_raises(self):
        cache = FreshnessCache(clock=FixedClock())

        def broken():
            raise StorageError("database locked")

        with pytest.raises(StorageError):
            asyncio.run(read_through(cache, "k", broken, 300, 300))
