"""
Source playlists router: named M3U sources stored as files on disk and
assigned to clients.
"""
import logging
import time
from pathlib import Path
from typing import Optional

import aiofiles
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import get_current_user
from client_processor import write_text_atomic
from database import get_db
from dependencies import get_source_playlist_dir
from errors import ConflictError, NotFoundError, PlaylistReadError, ValidationError
from m3u_generator import sanitize_stream_name
from m3u_parser import parse_m3u_content
from models import SourcePlaylist, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/source-playlists", tags=["Source Playlists"])


class CreateSourcePlaylistRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    content: Optional[str] = None


class UpdateContentRequest(BaseModel):
    content: Optional[str] = None


def source_playlist_filename(name: str) -> str:
    return f"{int(time.time() * 1000)}-{sanitize_stream_name(name)}.m3u"


def _get_source_playlist(db: Session, playlist_id: int) -> SourcePlaylist:
    playlist = db.get(SourcePlaylist, playlist_id)
    if playlist is None:
        raise NotFoundError("Playlist not found.")
    return playlist


def _remove_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("[SOURCES] Failed to delete file %s: %s", path, e)


@router.get("")
async def list_source_playlists(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    playlists = db.query(SourcePlaylist).order_by(SourcePlaylist.name.asc()).all()
    return [p.to_dict() for p in playlists]


@router.post("", status_code=201)
async def create_source_playlist(
    request: CreateSourcePlaylistRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    upload_dir: Path = Depends(get_source_playlist_dir),
):
    """Store M3U text as a new source playlist; rejects content with no streams."""
    if not request.name or not request.type or not request.content:
        raise ValidationError("Please provide name, type, and M3U content.")

    parsed = parse_m3u_content(request.content)
    if not parsed.items:
        raise ValidationError("The provided M3U content is empty or invalid.")

    if db.query(SourcePlaylist.id).filter(SourcePlaylist.name == request.name).first():
        raise ConflictError(f'A playlist with the name "{request.name}" already exists.')

    upload_dir = Path(upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = (upload_dir / source_playlist_filename(request.name)).resolve()
    await write_text_atomic(file_path, request.content)

    playlist = SourcePlaylist(
        name=request.name,
        type=request.type,
        file_path=str(file_path),
        stream_count=len(parsed.items),
    )
    db.add(playlist)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        _remove_file(file_path)
        raise ConflictError(f'A playlist with the name "{request.name}" already exists.') from e
    db.refresh(playlist)

    logger.info("[SOURCES] Created source playlist %s with %s streams", playlist.name, playlist.stream_count)
    return playlist.to_dict()


@router.get("/{playlist_id}/content", response_class=PlainTextResponse)
async def get_source_playlist_content(
    playlist_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    playlist = _get_source_playlist(db, playlist_id)
    try:
        async with aiofiles.open(playlist.file_path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
    except OSError as e:
        raise PlaylistReadError(playlist.file_path, str(e)) from e
    return PlainTextResponse(content)


@router.put("/{playlist_id}/content")
async def update_source_playlist_content(
    playlist_id: int,
    request: UpdateContentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Overwrite the playlist file and recount its streams."""
    if not isinstance(request.content, str):
        raise ValidationError("Request body must contain M3U content string.")
    playlist = _get_source_playlist(db, playlist_id)

    await write_text_atomic(Path(playlist.file_path), request.content)
    playlist.stream_count = len(parse_m3u_content(request.content).items)
    db.commit()
    db.refresh(playlist)

    logger.info("[SOURCES] Updated content of %s (%s streams)", playlist.name, playlist.stream_count)
    return playlist.to_dict()


@router.delete("/{playlist_id}", status_code=204)
async def delete_source_playlist(
    playlist_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    playlist = _get_source_playlist(db, playlist_id)
    file_path = Path(playlist.file_path)
    db.delete(playlist)
    db.commit()
    _remove_file(file_path)
    logger.info("[SOURCES] Deleted source playlist %s", playlist_id)
    return Response(status_code=204)
