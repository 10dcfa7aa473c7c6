"""
Client Processor.

Long-running process that watches the job queue and, for each stable job
file, builds the client's restream playlist:

1. read the job file ({clientId, username})
2. load the client and its assigned source playlists (in assignment order)
3. parse every playlist file, skipping ones that fail
4. concatenate their streams
5. render the client M3U and write {username}.m3u
6. store the playlist URL on the client
7. delete the job file

Any error in steps 1-6 leaves the job file in place and the client
untouched. Run with ``python client_processor.py``.
"""
import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import aiofiles

from config import get_settings, ensure_directories
from database import init_db, get_session_factory
from errors import NotFoundError, TransientIOError, ValidationError
from job_queue import Job, JobQueue, QueueWatcher
from log_utils import configure_logging
from m3u_generator import generate_m3u
from m3u_parser import StreamEntry, parse_m3u_from_file
from models import Client

logger = logging.getLogger(__name__)

M3U_URL_PREFIX = "/M3U"


def client_playlist_filename(username: str) -> str:
    """File name of a client's generated playlist; rejects names that escape the output dir."""
    if not username or "/" in username or "\\" in username or username.startswith("."):
        raise ValidationError(f"Username '{username}' cannot be used as a playlist file name")
    return f"{username}.m3u"


def client_playlist_path(output_dir, username: str) -> Path:
    return Path(output_dir) / client_playlist_filename(username)


async def write_text_atomic(path: Path, content: str) -> None:
    """Write content next to path and rename over it once fully flushed."""
    temp = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(temp, "w", encoding="utf-8") as f:
        await f.write(content)
        await f.flush()
    os.replace(temp, path)


@dataclass
class JobResult:
    success: bool
    job_path: Path
    client_id: Optional[int] = None
    username: Optional[str] = None
    m3u_url: Optional[str] = None
    stream_count: int = 0
    skipped_playlists: list[str] = field(default_factory=list)
    error: Optional[str] = None


class ClientProcessor:
    """Turns queued jobs into per-client playlist files."""

    def __init__(self, queue: JobQueue, session_factory, output_dir, server_base_url: str):
        self.queue = queue
        self.session_factory = session_factory
        self.output_dir = Path(output_dir)
        self.server_base_url = server_base_url

    async def process_job(self, job_path) -> JobResult:
        job_path = Path(job_path)
        try:
            job = await self.queue.claim(job_path)
        except Exception as e:
            logger.error(f"[PROCESSOR] Could not read job file {job_path}: {e}")
            return JobResult(success=False, job_path=job_path, error=str(e))

        logger.info(f"[PROCESSOR] Processing job for client: {job.username} (ID: {job.client_id})")
        self.queue.start(job)
        session = None
        try:
            session = self.session_factory()
            result = await self._generate(session, job)
            self.queue.ack(job)
            logger.info(f"[PROCESSOR] Job for {job.username} completed ({result.stream_count} streams)")
            return result
        except Exception as e:
            if session is not None:
                session.rollback()
            logger.exception(f"[PROCESSOR] Error processing job file {job_path}: {e}")
            try:
                self.queue.fail(job, str(e))
            except Exception:
                logger.exception(f"[PROCESSOR] Could not move failed job {job_path}, leaving it in place")
            return JobResult(
                success=False,
                job_path=job_path,
                client_id=job.client_id,
                username=job.username,
                error=str(e),
            )
        finally:
            if session is not None:
                session.close()

    async def _collect_streams(self, client: Client, result: JobResult) -> list[StreamEntry]:
        streams: list[StreamEntry] = []
        for source in client.source_playlists:
            try:
                parsed = await parse_m3u_from_file(source.file_path)
            except TransientIOError as e:
                logger.error(f"[PROCESSOR] Could not read playlist '{source.name}' ({source.file_path}), skipping: {e}")
                result.skipped_playlists.append(source.name)
                continue
            if not parsed.ok:
                logger.warning(f"[PROCESSOR] Playlist '{source.name}' is not valid M3U, skipping: {parsed.error}")
                result.skipped_playlists.append(source.name)
                continue
            streams.extend(parsed.items)
            logger.debug(
                f"[PROCESSOR] Added {len(parsed.items)} streams from {source.name}. Total now: {len(streams)}"
            )
        return streams

    async def _generate(self, session, job: Job) -> JobResult:
        client = session.get(Client, job.client_id)
        if client is None:
            raise NotFoundError(f"Client with ID {job.client_id} not found.")
        if not client.playlist_links:
            raise ValidationError(f"Client {job.username} has no source playlists assigned.")

        result = JobResult(success=True, job_path=job.path, client_id=job.client_id, username=job.username)
        logger.info(f"[PROCESSOR] Found {len(client.playlist_links)} playlists for {job.username}")
        streams = await self._collect_streams(client, result)

        content = generate_m3u(streams, self.server_base_url)
        file_name = client_playlist_filename(job.username)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / file_name
        await write_text_atomic(output_path, content)
        logger.info(f"[PROCESSOR] Generated M3U for {job.username} at {output_path}")

        client.m3u_url = f"{M3U_URL_PREFIX}/{file_name}"
        session.commit()

        result.m3u_url = client.m3u_url
        result.stream_count = len(streams)
        return result


def build_processor(settings=None) -> ClientProcessor:
    settings = settings or get_settings()
    queue = JobQueue(settings.queue_path, settings.failed_jobs_path)
    return ClientProcessor(
        queue=queue,
        session_factory=get_session_factory(),
        output_dir=settings.m3u_output_path,
        server_base_url=settings.server_base_url,
    )


async def run_processor() -> None:
    settings = get_settings()
    ensure_directories(settings)
    init_db()
    processor = build_processor(settings)
    watcher = QueueWatcher(
        settings.queue_path,
        processor.process_job,
        stability_threshold=settings.queue_stability_threshold,
        poll_interval=settings.queue_poll_interval,
        process_existing=settings.queue_process_existing,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, watcher.stop)
        except NotImplementedError:
            pass

    logger.info(f"[PROCESSOR] Client processor started, watching {settings.queue_path}")
    await watcher.run()
    logger.info("[PROCESSOR] Client processor shutting down")


def main() -> None:
    configure_logging(get_settings().log_level)
    asyncio.run(run_processor())


if __name__ == "__main__":
    main()
