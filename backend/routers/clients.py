"""
Clients router: reseller-owned client accounts.

Creating a client (or asking for regeneration) drops one job file into the
queue; the client processor builds the playlist file asynchronously.
"""
import asyncio
import calendar
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import RESELLER_ROLES, hash_password, require_roles
from client_processor import client_playlist_filename
from database import get_db
from dependencies import get_job_queue
from errors import ConflictError, NotFoundError, TransientIOError, ValidationError
from job_queue import JobQueue
from models import Client, ClientSourcePlaylist, SourcePlaylist, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["Clients"])

require_reseller = require_roles(*RESELLER_ROLES)


# =============================================================================
# Pydantic models
# =============================================================================


class CreateClientRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    expiration: Optional[int] = None  # months, 0 = lifetime
    playlistIds: Optional[List[int]] = None


class ResetPasswordRequest(BaseModel):
    newPassword: Optional[str] = None


class RenewClientRequest(BaseModel):
    expiration: Optional[int] = None


# =============================================================================
# Helpers
# =============================================================================


def add_months(start: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_expiration(months: int, base: Optional[datetime] = None) -> Optional[datetime]:
    """Expiration for a duration in months from base (default now); 0 means lifetime."""
    if months < 0:
        raise ValidationError("Expiration must be zero (lifetime) or a positive number of months.")
    if months == 0:
        return None
    return add_months(base or datetime.utcnow(), months)


def _get_owned_client(db: Session, client_id: int, user: User) -> Client:
    client = db.query(Client).filter(Client.id == client_id, Client.reseller_id == user.id).first()
    if client is None:
        raise NotFoundError("Client not found or you do not have permission to access it.")
    return client


def _unique_ids(ids: List[int]) -> List[int]:
    seen = set()
    ordered = []
    for playlist_id in ids:
        if playlist_id not in seen:
            seen.add(playlist_id)
            ordered.append(playlist_id)
    return ordered


async def _enqueue(queue: JobQueue, client: Client) -> None:
    try:
        await queue.enqueue(client.id, client.username)
    except OSError as e:
        logger.error("[CLIENTS] Could not enqueue playlist job for %s: %s", client.username, e)
        raise TransientIOError(f"Client saved but its playlist job could not be queued: {e}") from e


# =============================================================================
# Endpoints
# =============================================================================


@router.get("")
async def get_clients(user: User = Depends(require_reseller), db: Session = Depends(get_db)):
    """Clients owned by the calling reseller."""
    clients = db.query(Client).filter(Client.reseller_id == user.id).order_by(Client.created_at.desc()).all()
    return [c.to_dict() for c in clients]


@router.post("", status_code=201)
async def create_client(
    request: CreateClientRequest,
    user: User = Depends(require_reseller),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    """Create a client, assign its source playlists and queue playlist generation."""
    if not request.username or not request.password or request.expiration is None:
        raise ValidationError("Please provide username, password and expiration.")
    if not request.playlistIds:
        raise ValidationError("Select at least one playlist for the client.")
    client_playlist_filename(request.username)

    playlist_ids = _unique_ids(request.playlistIds)
    found = {
        p.id for p in db.query(SourcePlaylist.id).filter(SourcePlaylist.id.in_(playlist_ids)).all()
    }
    missing = [pid for pid in playlist_ids if pid not in found]
    if missing:
        raise ValidationError(f"One or more selected playlists do not exist: {missing}")

    if db.query(Client.id).filter(Client.username == request.username).first():
        raise ConflictError("Username already exists.")

    expiration_date = compute_expiration(request.expiration)
    password_hash = await asyncio.to_thread(hash_password, request.password)

    client = Client(
        username=request.username,
        password_hash=password_hash,
        expiration_date=expiration_date,
        reseller_id=user.id,
    )
    client.playlist_links = [
        ClientSourcePlaylist(source_playlist_id=pid, position=position)
        for position, pid in enumerate(playlist_ids)
    ]
    db.add(client)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Username already exists.") from e
    db.refresh(client)

    logger.info("[CLIENTS] Created client %s (ID: %s) for reseller %s", client.username, client.id, user.username)
    await _enqueue(queue, client)
    return client.to_dict()


@router.delete("/{client_id}", status_code=204)
async def delete_client(client_id: int, user: User = Depends(require_reseller), db: Session = Depends(get_db)):
    client = _get_owned_client(db, client_id, user)
    db.delete(client)
    db.commit()
    logger.info("[CLIENTS] Deleted client %s", client_id)
    return Response(status_code=204)


@router.put("/{client_id}/reset-password")
async def reset_client_password(
    client_id: int,
    request: ResetPasswordRequest,
    user: User = Depends(require_reseller),
    db: Session = Depends(get_db),
):
    if not request.newPassword:
        raise ValidationError("Please provide the new password.")
    client = _get_owned_client(db, client_id, user)
    client.password_hash = await asyncio.to_thread(hash_password, request.newPassword)
    db.commit()
    logger.info("[CLIENTS] Password reset for client %s", client.username)
    return {"message": "Password reset successfully."}


@router.put("/{client_id}/renew")
async def renew_client(
    client_id: int,
    request: RenewClientRequest,
    user: User = Depends(require_reseller),
    db: Session = Depends(get_db),
):
    """Extend a subscription from its current expiration, or from now when it has none."""
    if request.expiration is None:
        raise ValidationError("Please provide the renewal period in months.")
    client = _get_owned_client(db, client_id, user)

    client.expiration_date = compute_expiration(request.expiration, client.expiration_date)
    db.commit()
    db.refresh(client)
    logger.info("[CLIENTS] Renewed client %s until %s", client.username, client.expiration_date or "lifetime")
    return client.to_dict()


@router.post("/{client_id}/regenerate", status_code=202)
async def regenerate_client_playlist(
    client_id: int,
    user: User = Depends(require_reseller),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    client = _get_owned_client(db, client_id, user)
    await _enqueue(queue, client)
    return {"message": "Playlist generation queued."}
