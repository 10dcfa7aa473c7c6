"""
Shared FastAPI dependencies for the panel routers.

The playlist cache and the job queue live on ``app.state`` (created in the
lifespan handler in main.py). Directories resolve from settings per request.
"""
import tempfile
from pathlib import Path

from fastapi import Request

from config import get_settings
from job_queue import JobQueue
from playlist_cache import PlaylistCache


def get_playlist_cache(request: Request) -> PlaylistCache:
    return request.app.state.playlist_cache


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_source_playlist_dir() -> Path:
    return get_settings().source_playlist_path


def get_m3u_output_dir() -> Path:
    return get_settings().m3u_output_path


def get_master_import_dir() -> Path:
    return get_settings().master_import_path


def get_server_base_url() -> str:
    return get_settings().server_base_url


def get_temp_dir() -> Path:
    """Where merged playlists wait for the background worker to parse them."""
    return Path(tempfile.gettempdir())
