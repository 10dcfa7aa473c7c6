"""
Unit tests for the playlist cache module.
"""
import asyncio
import time

import pytest

from playlist_cache import CacheEntry, PlaylistCache, playlist_key


class TestCacheEntry:
    """Tests for CacheEntry dataclass."""

    def test_cache_entry_stores_data(self):
        """CacheEntry stores data, timestamp and ttl."""
        now = time.time()
        entry = CacheEntry(data=["a"], cached_at=now, ttl=10)

        assert entry.data == ["a"]
        assert entry.cached_at == now
        assert entry.ttl == 10

    def test_is_expired_after_ttl(self):
        entry = CacheEntry(data=1, cached_at=100.0, ttl=10)
        assert not entry.is_expired(now=109.9)
        assert entry.is_expired(now=110.0)

    def test_cache_entry_generic_typing(self):
        """CacheEntry supports different data types."""
        list_entry = CacheEntry[list](data=[1, 2, 3], cached_at=time.time(), ttl=1)
        assert list_entry.data == [1, 2, 3]


class TestPlaylistKey:

    def test_key_format(self):
        assert playlist_key(42) == "playlist_42"


class TestPlaylistCache:
    """Tests for PlaylistCache class."""

    @pytest.fixture
    def cache(self):
        """Create a fresh cache instance for each test."""
        return PlaylistCache(default_ttl=60, check_period=600)

    def test_cache_init(self, cache):
        assert cache._default_ttl == 60
        assert cache._hits == 0
        assert cache._misses == 0
        assert len(cache._cache) == 0

    def test_get_returns_cached_value(self, cache):
        cache.set("playlist_1", ["entry"])
        assert cache.get("playlist_1") == ["entry"]

    def test_get_returns_none_for_missing_key(self, cache):
        assert cache.get("playlist_404") is None

    def test_get_returns_none_for_expired_value(self, cache):
        """get() misses and evicts entries past their TTL."""
        cache.set("playlist_1", ["entry"], ttl=0)
        assert cache.get("playlist_1") is None
        assert "playlist_1" not in cache._cache

    def test_default_ttl_applied(self, cache):
        cache.set("playlist_1", [])
        assert cache._cache["playlist_1"].ttl == 60

    def test_empty_list_is_a_hit(self, cache):
        """A cached empty list is still a cached value, distinct from a miss."""
        cache.set("playlist_1", [])
        assert cache.get("playlist_1") == []
        assert cache._hits == 1

    def test_delete(self, cache):
        cache.set("playlist_1", ["a"])
        assert cache.delete("playlist_1") is True
        assert cache.get("playlist_1") is None
        assert cache.delete("playlist_1") is False

    def test_invalidate_playlist(self, cache):
        """invalidate_playlist() evicts the playlist's key so the next lookup misses."""
        cache.set(playlist_key(7), ["a"])
        cache.set(playlist_key(8), ["b"])

        assert cache.invalidate_playlist(7) is True

        assert cache.get(playlist_key(7)) is None
        assert cache.get(playlist_key(8)) == ["b"]

    def test_clear(self, cache):
        cache.set("playlist_1", ["a"])
        cache.set("playlist_2", ["b"])
        assert cache.clear() == 2
        assert len(cache._cache) == 0

    def test_sweep_evicts_only_expired(self, cache):
        cache.set("playlist_1", ["old"], ttl=0)
        cache.set("playlist_2", ["fresh"])

        assert cache.sweep() == 1
        assert "playlist_1" not in cache._cache
        assert "playlist_2" in cache._cache

    def test_contains(self, cache):
        cache.set("playlist_1", ["a"])
        cache.set("playlist_2", ["b"], ttl=0)
        assert "playlist_1" in cache
        assert "playlist_2" not in cache
        assert "playlist_3" not in cache

    def test_stats_tracks_hits_and_misses(self, cache):
        cache.set("playlist_1", ["a"])
        cache.get("playlist_1")
        cache.get("playlist_1")
        cache.get("playlist_2")

        stats = cache.stats()

        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 66.7
        assert stats["entry_count"] == 1
        assert stats["entries"][0]["key"] == "playlist_1"

    def test_stats_empty_cache(self, cache):
        assert cache.stats()["hit_rate_percent"] == 0


class TestSweepTask:
    """Tests for the background sweep task."""

    @pytest.mark.asyncio
    async def test_sweep_loop_evicts_expired_entries(self):
        cache = PlaylistCache(default_ttl=60, check_period=0.01)
        cache.set("playlist_1", ["old"], ttl=0)
        cache.start()
        try:
            await asyncio.sleep(0.05)
            assert "playlist_1" not in cache._cache
        finally:
            await cache.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_task(self):
        cache = PlaylistCache(check_period=600)
        cache.start()
        assert cache._sweep_task is not None

        await cache.stop()

        assert cache._sweep_task is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        cache = PlaylistCache(check_period=600)
        cache.start()
        task = cache._sweep_task
        cache.start()
        try:
            assert cache._sweep_task is task
        finally:
            await cache.stop()
