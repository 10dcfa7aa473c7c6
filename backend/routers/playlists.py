"""
Playlists router: client playlist retrieval, M3U analysis, master catalog
management and refreshable playlists.

Every change to a playlist's entries evicts its cache entry; changes to the
master catalog also flag it VERIFICANDO so the background worker re-reads it.
"""
import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional

import aiofiles
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import ADMIN_ROLES, require_roles, verify_password
from client_processor import client_playlist_path, write_text_atomic
from database import get_db
from dependencies import (
    get_m3u_output_dir,
    get_master_import_dir,
    get_playlist_cache,
    get_server_base_url,
    get_temp_dir,
)
from errors import ConflictError, NotFoundError, TransientIOError, ValidationError
from m3u_analyzer import analyze_m3u_string, get_master_playlist, guess_stream_type
from m3u_generator import generate_m3u, sanitize_stream_name
from m3u_parser import EXTINF_MARKER, StreamEntry, StreamType, parse_m3u_from_file, split_extinf
from models import MASTER_PLAYLIST_NAME, Client, Playlist, PlaylistStatus, Stream, User
from playlist_cache import PlaylistCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/playlists", tags=["Playlists"])

require_admin = require_roles(*ADMIN_ROLES)

M3U_MEDIA_TYPE = "application/vnd.apple.mpegurl"
MISSING_CREDENTIALS_BODY = "Erro: Utilizador e senha são obrigatórios."
AUTH_FAILED_BODY = "Autenticação falhou."
INTERNAL_ERROR_BODY = "Erro Interno do Servidor"
EXPIRED_PLAYLIST = "#EXTM3U\n#EXTINF:-1,Conta expirada\n"
MISSING_PLAYLIST = "#EXTM3U\n#EXTINF:-1,Playlist do cliente não gerada ou não encontrada.\n"
EMPTY_PLAYLIST = "#EXTM3U\n#EXTINF:-1,A playlist do cliente está vazia.\n"
MASTER_PRIORITY = 1
UNNAMED_STREAM = "Sem Nome"


# =============================================================================
# Pydantic models
# =============================================================================


class AnalyzeRequest(BaseModel):
    m3uContent: Optional[str] = None
    normalizeUrls: bool = False


class CreateFromParsedRequest(BaseModel):
    streams: Optional[List[dict]] = None


class MasterStreamRequest(BaseModel):
    name: Optional[str] = None
    streamUrl: Optional[str] = None
    streamType: Optional[str] = None
    groupTitle: Optional[str] = None


class StreamTypeRequest(BaseModel):
    streamType: Optional[str] = None


class MergeSelectionRequest(BaseModel):
    name: Optional[str] = None
    priority: Optional[int] = None
    selectedStreams: Optional[List[dict]] = None


# =============================================================================
# Helpers
# =============================================================================


def _parse_stream_type(value: Optional[str], default: StreamType = StreamType.CANAL) -> StreamType:
    if value is None:
        return default
    try:
        return StreamType(value)
    except ValueError as e:
        raise ValidationError("Invalid stream type.") from e


def _rename_extinf(raw: Optional[str], name: str) -> str:
    if not raw or not raw.startswith(EXTINF_MARKER):
        return f"{EXTINF_MARKER}:-1,{name}"
    attribute_section, _ = split_extinf(raw)
    return f"{EXTINF_MARKER}:{attribute_section},{name}"


def _get_or_create_master(db: Session, user: User, status: PlaylistStatus) -> Playlist:
    master = get_master_playlist(db)
    if master is None:
        master = Playlist(
            name=MASTER_PLAYLIST_NAME,
            priority=MASTER_PRIORITY,
            owner_id=user.id,
            status=status.value,
        )
        db.add(master)
        db.flush()
        logger.info("[PLAYLISTS] Created master playlist (ID: %s)", master.id)
    return master


def _require_master(db: Session) -> Playlist:
    master = get_master_playlist(db)
    if master is None:
        raise NotFoundError("Master playlist not found.")
    return master


def _get_master_stream(db: Session, stream_id: int) -> Stream:
    master = _require_master(db)
    stream = db.query(Stream).filter(Stream.id == stream_id, Stream.playlist_id == master.id).first()
    if stream is None:
        raise NotFoundError("Stream not found.")
    return stream


def _mark_for_refresh(db: Session, cache: PlaylistCache, playlist_id: int) -> None:
    """Evict the cached entries and hand the playlist back to the worker."""
    cache.invalidate_playlist(playlist_id)
    playlist = db.get(Playlist, playlist_id)
    if playlist is not None:
        playlist.status = PlaylistStatus.VERIFICANDO.value


def _stream_from_entry(entry: StreamEntry, playlist_id: int) -> Stream:
    return Stream(
        playlist_id=playlist_id,
        name=entry.name or UNNAMED_STREAM,
        stream_url=entry.url,
        stream_type=entry.stream_type.value,
        group_title=entry.group_title,
        raw=entry.raw or None,
    )


def _commit_or_conflict(db: Session, message: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(message) from e


# =============================================================================
# Client playlist retrieval
# =============================================================================


@router.get("/get.php")
async def get_client_playlist(
    username: Optional[str] = None,
    password: Optional[str] = None,
    db: Session = Depends(get_db),
    output_dir: Path = Depends(get_m3u_output_dir),
):
    """Serve a client's generated playlist, or a one-entry placeholder playlist."""
    if not username or not password:
        return PlainTextResponse(MISSING_CREDENTIALS_BODY, status_code=400)

    client = db.query(Client).filter(Client.username == username).first()
    if client is None or not await asyncio.to_thread(verify_password, password, client.password_hash):
        return PlainTextResponse(AUTH_FAILED_BODY, status_code=401)

    if client.is_expired():
        return PlainTextResponse(EXPIRED_PLAYLIST)

    try:
        path = client_playlist_path(output_dir, client.username)
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
    except FileNotFoundError:
        logger.warning("[PLAYLISTS] Client M3U file not found for %s", client.username)
        return PlainTextResponse(MISSING_PLAYLIST)
    except (OSError, ValidationError) as e:
        logger.error("[PLAYLISTS] Error reading playlist for %s: %s", client.username, e)
        return PlainTextResponse(INTERNAL_ERROR_BODY, status_code=500)

    if not content.strip():
        return PlainTextResponse(EMPTY_PLAYLIST)

    safe_name = sanitize_stream_name(client.username)
    return Response(
        content=content,
        media_type=M3U_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{safe_name}.m3u"'},
    )


# =============================================================================
# Analysis and master catalog
# =============================================================================


@router.post("/analyze")
async def analyze_m3u(request: AnalyzeRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Split pasted M3U content into streams new to the master catalog and duplicates."""
    if not request.m3uContent:
        raise ValidationError("M3U content is required.")
    result = analyze_m3u_string(db, request.m3uContent, normalize_urls=request.normalizeUrls)
    return result.to_dict()


@router.post("/master/create-from-parsed", status_code=201)
async def create_master_from_parsed(
    request: CreateFromParsedRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    """Add approved streams to the master catalog, skipping URLs it already holds."""
    if not request.streams:
        raise ValidationError("The stream list is required and cannot be empty.")

    master = _get_or_create_master(db, user, PlaylistStatus.ONLINE)
    known_urls = {row[0] for row in db.query(Stream.stream_url).filter(Stream.playlist_id == master.id).all()}

    added = 0
    for item in request.streams:
        entry = StreamEntry.from_dict(item)
        if not entry.url or entry.url in known_urls:
            continue
        known_urls.add(entry.url)
        db.add(_stream_from_entry(entry, master.id))
        added += 1

    cache.invalidate_playlist(master.id)
    master.status = PlaylistStatus.ONLINE.value
    _commit_or_conflict(db, "A stream with this URL already exists in the master playlist.")

    logger.info("[PLAYLISTS] Added %s new streams to the master playlist", added)
    return {
        "message": f"{added} new streams were added to the Master Playlist.",
        "count": added,
    }


@router.get("/master/streams")
async def get_master_streams(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    master = _require_master(db)
    streams = db.query(Stream).filter(Stream.playlist_id == master.id).order_by(Stream.id).all()
    return [s.to_dict() for s in streams]


@router.post("/master/streams", status_code=201)
async def add_master_stream(
    request: MasterStreamRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    if not request.name or not request.streamUrl:
        raise ValidationError("Stream name and URL are required.")
    stream_type = _parse_stream_type(request.streamType)
    master = _require_master(db)

    stream = Stream(
        playlist_id=master.id,
        name=request.name,
        stream_url=request.streamUrl,
        stream_type=stream_type.value,
        group_title=request.groupTitle,
        raw=_rename_extinf(None, request.name),
    )
    db.add(stream)
    _mark_for_refresh(db, cache, master.id)
    _commit_or_conflict(db, "A stream with this URL already exists in the master playlist.")
    db.refresh(stream)
    logger.info("[PLAYLISTS] Added stream %s to the master playlist", stream.name)
    return stream.to_dict()


@router.put("/master/streams/{stream_id}")
async def update_master_stream(
    stream_id: int,
    request: MasterStreamRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    if not request.name or not request.streamUrl:
        raise ValidationError("Stream name and URL are required.")
    stream = _get_master_stream(db, stream_id)

    stream.name = request.name
    stream.stream_url = request.streamUrl
    stream.raw = _rename_extinf(stream.raw, request.name)
    if request.streamType is not None:
        stream.stream_type = _parse_stream_type(request.streamType).value
    _mark_for_refresh(db, cache, stream.playlist_id)
    _commit_or_conflict(db, "A stream with this URL already exists in the master playlist.")
    db.refresh(stream)
    return stream.to_dict()


@router.delete("/master/streams/{stream_id}")
async def delete_master_stream(
    stream_id: int,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    stream = _get_master_stream(db, stream_id)
    deleted = stream.to_dict()
    db.delete(stream)
    _mark_for_refresh(db, cache, stream.playlist_id)
    db.commit()
    logger.info("[PLAYLISTS] Removed stream %s from playlist %s", stream_id, stream.playlist_id)
    return {"message": "Stream removed successfully.", "stream": deleted}


@router.put("/master/streams/{stream_id}/type")
async def update_stream_type(
    stream_id: int,
    request: StreamTypeRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    if request.streamType is None:
        raise ValidationError("Invalid stream type.")
    stream_type = _parse_stream_type(request.streamType)
    stream = _get_master_stream(db, stream_id)
    stream.stream_type = stream_type.value
    cache.invalidate_playlist(stream.playlist_id)
    db.commit()
    db.refresh(stream)
    return stream.to_dict()


# =============================================================================
# Import folder, merge and sync
# =============================================================================


async def _parse_import_folder(import_dir: Path) -> list[dict]:
    """Parse every .m3u file in the import folder, recording per-file failures."""
    if not import_dir.is_dir():
        return []
    results = []
    for path in sorted(import_dir.glob("*.m3u")):
        try:
            parsed = await parse_m3u_from_file(path)
        except TransientIOError as e:
            logger.warning("[PLAYLISTS] Could not read %s, ignoring: %s", path.name, e.message)
            results.append({"fileName": path.name, "error": e.message, "items": []})
            continue
        entry = {"fileName": path.name, "items": parsed.items}
        if not parsed.ok:
            logger.warning("[PLAYLISTS] %s is not valid M3U, ignoring: %s", path.name, parsed.error)
            entry["error"] = parsed.error
        results.append(entry)
    return results


@router.get("/m3u-folder-content")
async def get_import_folder_content(
    user: User = Depends(require_admin),
    import_dir: Path = Depends(get_master_import_dir),
):
    """Parsed contents of the import folder, for picking streams to merge."""
    files = await _parse_import_folder(Path(import_dir))
    for entry in files:
        entry["items"] = [item.to_dict() for item in entry["items"]]
    return files


@router.post("/merge-from-selection", status_code=201)
async def merge_from_selection(
    request: MergeSelectionRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    server_base_url: str = Depends(get_server_base_url),
    temp_dir: Path = Depends(get_temp_dir),
):
    """Render selected streams to a temp file and register it as a refreshable playlist."""
    if not request.name or request.priority is None or request.selectedStreams is None:
        raise ValidationError("Provide a name, a priority and the selected streams for the merged playlist.")
    if not request.selectedStreams:
        raise ValidationError("No streams selected to create the playlist.")

    content = generate_m3u(request.selectedStreams, server_base_url)
    stamp = int(time.time() * 1000)
    temp_dir = Path(temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    temp_path = (temp_dir / f"merged_playlist_{stamp}.m3u").resolve()
    await write_text_atomic(temp_path, content)

    playlist = Playlist(
        name=request.name,
        url=temp_path.as_uri(),
        file_name=f"merged_from_selection_{stamp}.m3u",
        priority=request.priority,
        owner_id=user.id,
        status=PlaylistStatus.VERIFICANDO.value,
    )
    db.add(playlist)
    db.commit()
    db.refresh(playlist)
    logger.info("[PLAYLISTS] Created merged playlist %s from %s selected streams", playlist.name, len(request.selectedStreams))
    return playlist.to_dict()


@router.post("/sync-master")
async def sync_master_playlist(
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
    import_dir: Path = Depends(get_master_import_dir),
):
    """Replace the master catalog with the union of the import folder's playlists."""
    files = await _parse_import_folder(Path(import_dir))
    if not files:
        raise NotFoundError("No .m3u files found in the import folder to synchronize.")

    entries: list[StreamEntry] = []
    seen_urls = set()
    for entry in files:
        for item in entry["items"]:
            if item.url in seen_urls:
                continue
            seen_urls.add(item.url)
            entries.append(item.with_stream_type(guess_stream_type(item.group_title)))
    if not entries:
        raise ValidationError("Could not extract streams from any M3U file for synchronization.")

    master = _get_or_create_master(db, user, PlaylistStatus.VERIFICANDO)
    db.query(Stream).filter(Stream.playlist_id == master.id).delete()
    db.add_all([_stream_from_entry(entry, master.id) for entry in entries])
    _mark_for_refresh(db, cache, master.id)
    db.commit()
    db.refresh(master)

    logger.info("[PLAYLISTS] Master playlist synchronized from %s files with %s streams", len(files), len(entries))
    return {
        "message": "Master playlist synchronization started.",
        "streamCount": len(entries),
        "playlist": master.to_dict(),
    }


# =============================================================================
# Refreshable playlists
# =============================================================================


@router.get("")
async def get_playlists(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    playlists = db.query(Playlist).filter(Playlist.owner_id == user.id).order_by(Playlist.priority.asc()).all()
    return [p.to_dict() for p in playlists]


@router.delete("/{playlist_id}", status_code=204)
async def delete_playlist(
    playlist_id: int,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    playlist = db.get(Playlist, playlist_id)
    if playlist is None:
        raise NotFoundError("Playlist not found.")
    db.delete(playlist)
    db.commit()
    cache.invalidate_playlist(playlist_id)
    logger.info("[PLAYLISTS] Playlist %s deleted and removed from the cache", playlist_id)
    return Response(status_code=204)


@router.post("/{playlist_id}/refresh", status_code=202)
async def refresh_playlist(
    playlist_id: int,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: PlaylistCache = Depends(get_playlist_cache),
):
    if db.get(Playlist, playlist_id) is None:
        raise NotFoundError("Playlist not found.")
    _mark_for_refresh(db, cache, playlist_id)
    db.commit()
    return {"message": "Playlist refresh started. The worker will process it shortly."}
