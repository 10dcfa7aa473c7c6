"""
Background Refresh Worker.

Re-parses every playlist whose status is VERIFICANDO or OFFLINE and stores
the result in the playlist cache:

- master playlist: entries come straight from the streams table
- file:// upload: parsed by the parsing microservice, temp file removed after
- http(s) URL: fetched and parsed here

Success with at least one entry marks the playlist ONLINE; anything else
evicts its cache entry and marks it OFFLINE so the next cycle retries it.
Playlists are processed one at a time.

Usage:
    python background_worker.py          # refresh now, then every REFRESH_INTERVAL seconds
    python background_worker.py --once   # single pass, for external schedulers
"""
import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from config import get_settings, ensure_directories
from database import init_db, get_session_factory
from errors import TransientIOError
from log_utils import configure_logging
from m3u_parser import StreamEntry, StreamType, parse_m3u_from_url
from models import Playlist, PlaylistStatus, Stream
from playlist_cache import PlaylistCache, playlist_key

logger = logging.getLogger(__name__)

STALE_STATUSES = (PlaylistStatus.VERIFICANDO.value, PlaylistStatus.OFFLINE.value)
PARSER_SERVICE_TIMEOUT = 300.0  # Large uploads can take minutes to parse


def file_url_to_path(url: str) -> Path:
    return Path(url2pathname(urlparse(url).path))


def stream_row_to_entry(stream: Stream) -> StreamEntry:
    try:
        stream_type = StreamType(stream.stream_type)
    except ValueError:
        stream_type = StreamType.CANAL
    return StreamEntry(
        name=stream.name,
        url=stream.stream_url,
        raw=stream.raw or f"#EXTINF:-1,{stream.name}",
        group_title=stream.group_title,
        stream_type=stream_type,
    )


@dataclass
class RefreshSummary:
    total: int = 0
    online: list[int] = field(default_factory=list)
    offline: list[int] = field(default_factory=list)


class BackgroundWorker:
    """Sequential refresher for stale playlists."""

    def __init__(
        self,
        session_factory,
        cache: PlaylistCache,
        parser_service_url: str,
        fetch_timeout: float = 15.0,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.parser_service_url = parser_service_url.rstrip("/")
        self.fetch_timeout = fetch_timeout
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def _parse_via_service(self, file_path: Path) -> list[StreamEntry]:
        logger.info(f"[WORKER] Sending file path to parsing service: {file_path}")
        async with httpx.AsyncClient(timeout=PARSER_SERVICE_TIMEOUT) as client:
            try:
                response = await client.post(
                    f"{self.parser_service_url}/parse",
                    json={"filePath": str(file_path)},
                )
            except httpx.HTTPError as e:
                raise TransientIOError(f"Parsing service unreachable: {e}") from e
        if response.status_code >= 400:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise TransientIOError(message or f"Parsing service returned HTTP {response.status_code}")
        return [StreamEntry.from_dict(item) for item in response.json().get("items", [])]

    async def _load_entries(self, session, playlist: Playlist) -> tuple[list[StreamEntry], Optional[Path]]:
        """Return (entries, temp file to clean up)."""
        if playlist.is_master:
            streams = session.query(Stream).filter(Stream.playlist_id == playlist.id).all()
            logger.info(f"[WORKER] Loaded {len(streams)} streams from the database for master playlist {playlist.name}")
            return [stream_row_to_entry(s) for s in streams], None

        if playlist.url and playlist.url.startswith("file://"):
            temp_file = file_url_to_path(playlist.url)
            return await self._parse_via_service(temp_file), temp_file

        if playlist.url:
            logger.info(f"[WORKER] Parsing URL directly: {playlist.url}")
            parsed = await parse_m3u_from_url(playlist.url, timeout=self.fetch_timeout)
            if not parsed.ok:
                raise TransientIOError(parsed.error)
            return parsed.items, None

        raise TransientIOError("Playlist has no URL or file path and is not the master playlist")

    def _set_status(self, session, playlist: Playlist, status: PlaylistStatus) -> None:
        playlist.status = status.value
        session.commit()

    async def update_playlist_cache(self, session, playlist: Playlist) -> bool:
        """Refresh one playlist. Returns True if it ended ONLINE."""
        logger.info(f"[WORKER] Refreshing cache for playlist: {playlist.name} (ID: {playlist.id})")
        key = playlist_key(playlist.id)
        temp_file: Optional[Path] = None
        try:
            entries, temp_file = await self._load_entries(session, playlist)
            if not entries:
                raise TransientIOError("Playlist is empty or its M3U content is invalid")

            self.cache.set(key, entries)
            self._set_status(session, playlist, PlaylistStatus.ONLINE)
            logger.info(f"[WORKER] Cache updated for playlist {playlist.name} with {len(entries)} items")
            return True
        except Exception as e:
            logger.error(f"[WORKER] Failed to refresh playlist {playlist.id}: {e}")
            self.cache.delete(key)
            try:
                session.rollback()
                self._set_status(session, playlist, PlaylistStatus.OFFLINE)
            except Exception as db_error:
                session.rollback()
                logger.error(f"[WORKER] Failed to mark playlist {playlist.id} OFFLINE: {db_error}")
            return False
        finally:
            if temp_file is not None:
                try:
                    temp_file.unlink()
                    logger.debug(f"[WORKER] Temporary file {temp_file} deleted")
                except FileNotFoundError:
                    pass
                except OSError as cleanup_error:
                    logger.error(f"[WORKER] Error deleting temporary file {temp_file}: {cleanup_error}")

    async def refresh_all_playlists(self) -> RefreshSummary:
        """One refresh cycle over every VERIFICANDO/OFFLINE playlist."""
        logger.info("[WORKER] Checking for playlists to process...")
        summary = RefreshSummary()
        session = self.session_factory()
        try:
            playlists = session.query(Playlist).filter(Playlist.status.in_(STALE_STATUSES)).order_by(Playlist.id).all()
            summary.total = len(playlists)
            if not playlists:
                logger.info("[WORKER] No playlists need processing right now")
                return summary

            logger.info(f"[WORKER] Found {len(playlists)} playlists to process")
            for playlist in playlists:
                if await self.update_playlist_cache(session, playlist):
                    summary.online.append(playlist.id)
                else:
                    summary.offline.append(playlist.id)
            logger.info(
                f"[WORKER] Refresh cycle complete: {len(summary.online)} online, {len(summary.offline)} offline"
            )
        except Exception as e:
            logger.exception(f"[WORKER] Error during playlist refresh cycle: {e}")
        finally:
            session.close()
        return summary

    async def run_forever(self, interval: float = 300) -> None:
        """Refresh immediately, then every interval seconds until stop()."""
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info(f"[WORKER] Background worker started (interval={interval}s)")
        while self._running:
            await self.refresh_all_playlists()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[WORKER] Background worker stopped")

    def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()


def build_worker(settings=None, cache: Optional[PlaylistCache] = None) -> BackgroundWorker:
    settings = settings or get_settings()
    return BackgroundWorker(
        session_factory=get_session_factory(),
        cache=cache or PlaylistCache(settings.cache_ttl, settings.cache_check_period),
        parser_service_url=settings.parser_service_url,
        fetch_timeout=settings.fetch_timeout,
    )


async def run_worker(once: bool = False) -> None:
    settings = get_settings()
    ensure_directories(settings)
    init_db()
    worker = build_worker(settings)

    if once:
        await worker.refresh_all_playlists()
        logger.info("[WORKER] Single refresh pass completed, exiting")
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            pass

    worker.cache.start()
    try:
        await worker.run_forever(settings.refresh_interval)
    finally:
        await worker.cache.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Refresh stale playlists into the playlist cache")
    parser.add_argument("--once", action="store_true", help="Run a single refresh pass and exit")
    args = parser.parse_args()

    configure_logging(get_settings().log_level)
    asyncio.run(run_worker(once=args.once))


if __name__ == "__main__":
    main()
