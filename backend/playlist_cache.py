"""
Playlist Cache.

In-memory TTL store for parsed playlists, keyed "playlist_<id>". It is an
optimization only: a miss means "re-derive from the database or file",
never "this playlist has no streams". Every mutation of a playlist's stream
set must call invalidate_playlist().

One instance is created per process and handed to whoever needs it (the API
keeps it on app.state, the background worker owns its own).
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL = 3600  # seconds
DEFAULT_CHECK_PERIOD = 600  # seconds between expiry sweeps


def playlist_key(playlist_id: int) -> str:
    return f"playlist_{playlist_id}"


@dataclass
class CacheEntry(Generic[T]):
    data: T
    cached_at: float
    ttl: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) - self.cached_at >= self.ttl


class PlaylistCache:
    """TTL cache with explicit invalidation and a periodic expiry sweep."""

    def __init__(self, default_ttl: float = DEFAULT_TTL, check_period: float = DEFAULT_CHECK_PERIOD):
        self._default_ttl = default_ttl
        self._check_period = check_period
        self._cache: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._sweep_task: Optional[asyncio.Task] = None

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired():
            del self._cache[key]
            self._misses += 1
            logger.debug(f"[CACHE] Expired: {key}")
            return None
        self._hits += 1
        return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._cache[key] = CacheEntry(
            data=value,
            cached_at=time.time(),
            ttl=self._default_ttl if ttl is None else ttl,
        )

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        if key in self._cache:
            del self._cache[key]
            logger.debug(f"[CACHE] Invalidated: {key}")
            return True
        return False

    def invalidate_playlist(self, playlist_id: int) -> bool:
        return self.delete(playlist_key(playlist_id))

    def clear(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        return count

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        now = time.time()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"[CACHE] Sweep evicted {len(expired)} entries")
        return len(expired)

    def stats(self) -> dict:
        total = self._hits + self._misses
        now = time.time()
        return {
            "entry_count": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(self._hits / total * 100, 1) if total else 0,
            "entries": [
                {"key": key, "age_seconds": round(now - entry.cached_at, 1), "ttl": entry.ttl}
                for key, entry in self._cache.items()
            ],
        }

    def __contains__(self, key: str) -> bool:
        entry = self._cache.get(key)
        return entry is not None and not entry.is_expired()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._check_period)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"[CACHE] Playlist cache started (ttl={self._default_ttl}s, sweep every {self._check_period}s)")

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
