"""
Directory-backed job queue for client playlist generation.

Producers (the API) enqueue one JSON file per client. The client processor
watches the directory, claims stable files, and either acks (deletes) or
fails them. A failed job file stays where it is unless a dead-letter
directory is configured, so it can be retried by re-enqueueing.
"""
import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiofiles

from errors import ValidationError

logger = logging.getLogger(__name__)

JOB_SUFFIX = ".json"


# ---------------------------------------------------------------------------
# Enums & Exceptions
# ---------------------------------------------------------------------------

class JobStatus(Enum):
    QUEUED = "queued"
    CLAIMED = "claimed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when a job state transition is not allowed."""


class InvalidJobError(ValidationError):
    """Raised when a job file does not hold a valid {clientId, username} object."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Job:
    client_id: int
    username: str
    path: Path
    status: JobStatus = JobStatus.CLAIMED
    error: Optional[str] = None
    claimed_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def to_payload(self) -> dict:
        return {"clientId": self.client_id, "username": self.username}


def job_file_name(client_id: int) -> str:
    return f"{client_id}{JOB_SUFFIX}"


def parse_job_payload(raw: str, path: Path) -> Tuple[int, str]:
    """Validate job file contents and return (client_id, username)."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidJobError(f"Job file {path.name} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidJobError(f"Job file {path.name} must contain a JSON object")

    client_id = data.get("clientId")
    username = data.get("username")
    if isinstance(client_id, bool) or not isinstance(client_id, int):
        raise InvalidJobError(f"Job file {path.name} has no integer clientId")
    if not isinstance(username, str) or not username:
        raise InvalidJobError(f"Job file {path.name} has no username")
    return client_id, username


# ---------------------------------------------------------------------------
# JobQueue
# ---------------------------------------------------------------------------

class JobQueue:
    """Claim / process / ack-or-fail protocol over a queue directory."""

    def __init__(self, queue_dir, failed_dir=None) -> None:
        self.queue_dir = Path(queue_dir)
        self.failed_dir = Path(failed_dir) if failed_dir else None

    def ensure_dirs(self) -> None:
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        if self.failed_dir:
            self.failed_dir.mkdir(parents=True, exist_ok=True)

    async def enqueue(self, client_id: int, username: str) -> Path:
        """Write {client_id}.json atomically and return its path.

        The payload is written to a hidden temp file first; the watcher
        ignores dotfiles, so it only ever sees the complete file.
        """
        self.ensure_dirs()
        target = self.queue_dir / job_file_name(client_id)
        temp = self.queue_dir / f".{target.name}.tmp"
        payload = json.dumps({"clientId": client_id, "username": username})
        async with aiofiles.open(temp, "w", encoding="utf-8") as f:
            await f.write(payload)
        os.replace(temp, target)
        logger.info(f"[QUEUE] Enqueued generation job for {username} (client {client_id})")
        return target

    def pending(self) -> List[Path]:
        """Job files currently in the queue, oldest first."""
        if not self.queue_dir.exists():
            return []
        files = [
            p for p in self.queue_dir.iterdir()
            if p.is_file() and p.suffix == JOB_SUFFIX and not p.name.startswith(".")
        ]
        return sorted(files, key=lambda p: p.stat().st_mtime)

    async def claim(self, path) -> Job:
        """Read and validate a job file.

        Raises:
            InvalidJobError: If the payload is malformed.
            OSError: If the file cannot be read.
        """
        path = Path(path)
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        client_id, username = parse_job_payload(raw, path)
        return Job(client_id=client_id, username=username, path=path)

    def start(self, job: Job) -> None:
        if job.status != JobStatus.CLAIMED:
            raise InvalidTransitionError(f"Cannot start job in {job.status.value} state")
        job.status = JobStatus.PROCESSING

    def ack(self, job: Job) -> None:
        """Delete the job file; this is the commit signal for a processed job."""
        if job.status != JobStatus.PROCESSING:
            raise InvalidTransitionError(f"Cannot complete job in {job.status.value} state")
        job.path.unlink(missing_ok=True)
        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.utcnow()
        logger.debug(f"[QUEUE] Job file deleted: {job.path}")

    def fail(self, job: Job, error: str) -> Optional[Path]:
        """Mark a job failed. The file stays in place unless a dead-letter dir is set.

        Returns:
            The dead-letter path if the file was moved, else None.
        """
        if job.status not in (JobStatus.CLAIMED, JobStatus.PROCESSING):
            raise InvalidTransitionError(f"Cannot fail job in {job.status.value} state")
        job.status = JobStatus.FAILED
        job.error = error
        job.completed_at = datetime.utcnow()
        if self.failed_dir is None or not job.path.exists():
            return None
        self.failed_dir.mkdir(parents=True, exist_ok=True)
        target = self.failed_dir / job.path.name
        shutil.move(str(job.path), str(target))
        logger.info(f"[QUEUE] Moved failed job {job.path.name} to {self.failed_dir}")
        return target


# ---------------------------------------------------------------------------
# QueueWatcher
# ---------------------------------------------------------------------------

FileSignature = Tuple[int, int]  # (size, mtime_ns)


class QueueWatcher:
    """
    Polls the queue directory and reports files that have stopped changing.

    A file is stable once its size and mtime have been unchanged for
    stability_threshold seconds. Each stable version of a file is reported
    once; rewriting the file (re-enqueueing) makes it eligible again.
    """

    def __init__(
        self,
        queue_dir,
        on_stable: Callable[[Path], Awaitable[object]],
        stability_threshold: float = 2.0,
        poll_interval: float = 0.1,
        process_existing: bool = False,
    ) -> None:
        self.queue_dir = Path(queue_dir)
        self.on_stable = on_stable
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval
        self.process_existing = process_existing
        self._observed: Dict[Path, Tuple[FileSignature, float]] = {}
        self._reported: Dict[Path, FileSignature] = {}
        self._primed = False
        self._running = False

    def _snapshot(self) -> Dict[Path, FileSignature]:
        snapshot = {}
        if not self.queue_dir.exists():
            return snapshot
        for entry in os.scandir(self.queue_dir):
            if entry.name.startswith(".") or not entry.name.endswith(JOB_SUFFIX) or not entry.is_file():
                continue
            try:
                stat = entry.stat()
            except FileNotFoundError:
                continue
            snapshot[Path(entry.path)] = (stat.st_size, stat.st_mtime_ns)
        return snapshot

    def scan(self, now: Optional[float] = None) -> List[Path]:
        """Run one polling pass and return files that just became stable."""
        now = time.monotonic() if now is None else now
        snapshot = self._snapshot()

        if not self._primed:
            self._primed = True
            if not self.process_existing:
                self._reported.update(snapshot)
                if snapshot:
                    logger.info(f"[QUEUE] Ignoring {len(snapshot)} job files present at startup")

        for path in list(self._observed):
            if path not in snapshot:
                del self._observed[path]
        for path in list(self._reported):
            if path not in snapshot:
                del self._reported[path]

        stable = []
        for path, signature in snapshot.items():
            if self._reported.get(path) == signature:
                continue
            seen = self._observed.get(path)
            if seen is None or seen[0] != signature:
                self._observed[path] = (signature, now)
                continue
            if now - seen[1] >= self.stability_threshold:
                self._reported[path] = signature
                del self._observed[path]
                stable.append(path)
        return stable

    async def run(self) -> None:
        """Poll until stop() is called, handing each stable file to on_stable in turn."""
        self._running = True
        logger.info(f"[QUEUE] Watching for new jobs in {self.queue_dir}")
        while self._running:
            try:
                stable = self.scan()
            except Exception:
                logger.exception(f"[QUEUE] Error scanning {self.queue_dir}")
                stable = []
            for path in stable:
                logger.info(f"[QUEUE] New job file detected: {path}")
                try:
                    await self.on_stable(path)
                except Exception:
                    logger.exception(f"[QUEUE] Error handling job file {path}")
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self._running = False
