"""
SQLAlchemy ORM models for the panel: users, clients, source playlists,
refreshable playlists and the master catalog's streams.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Index, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base

MASTER_PLAYLIST_NAME = "Master Client Playlist"


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    MASTER_RESELLER = "MASTER_RESELLER"
    RESELLER = "RESELLER"


class PlaylistStatus(str, Enum):
    VERIFICANDO = "VERIFICANDO"  # Pending reprocessing by the background worker
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() + "Z" if value else None


class User(Base):
    """
    Panel operator account. Super admins create master resellers, master
    resellers create resellers, resellers create clients.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.RESELLER.value, nullable=False)
    parent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    clients = relationship("Client", back_populates="reseller", cascade="all, delete-orphan")
    playlists = relationship("Playlist", back_populates="owner")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "parent_id": self.parent_id,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"


class SourcePlaylist(Base):
    """
    Operator-managed named M3U source backed by a file on disk.
    stream_count caches the item count of the last successful parse.
    """
    __tablename__ = "source_playlists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    type = Column(String(50), nullable=False)
    file_path = Column(Text, nullable=False)
    stream_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    client_links = relationship("ClientSourcePlaylist", back_populates="source_playlist", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "filePath": self.file_path,
            "streamCount": self.stream_count,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SourcePlaylist(id={self.id}, name={self.name}, streams={self.stream_count})>"


class ClientSourcePlaylist(Base):
    """Ordered assignment of a source playlist to a client."""
    __tablename__ = "client_source_playlists"

    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    source_playlist_id = Column(Integer, ForeignKey("source_playlists.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, default=0, nullable=False)  # Assignment order, drives output order

    client = relationship("Client", back_populates="playlist_links")
    source_playlist = relationship("SourcePlaylist", back_populates="client_links")


class Client(Base):
    """
    End customer of a reseller. expiration_date None means lifetime.
    m3u_url is set by the client processor once the playlist file exists.
    """
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    expiration_date = Column(DateTime, nullable=True)
    m3u_url = Column(Text, nullable=True)
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    reseller = relationship("User", back_populates="clients")
    playlist_links = relationship(
        "ClientSourcePlaylist",
        back_populates="client",
        cascade="all, delete-orphan",
        order_by="ClientSourcePlaylist.position",
    )

    __table_args__ = (
        Index("idx_client_reseller", reseller_id),
    )

    @property
    def source_playlists(self) -> list[SourcePlaylist]:
        """Assigned source playlists in assignment order."""
        return [link.source_playlist for link in self.playlist_links]

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiration_date is None:
            return False
        return (now or datetime.utcnow()) > self.expiration_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "m3uUrl": self.m3u_url,
            "expirationDate": _iso(self.expiration_date),
            "createdAt": _iso(self.created_at),
            "resellerId": self.reseller_id,
            "playlistIds": [link.source_playlist_id for link in self.playlist_links],
        }

    def __repr__(self):
        return f"<Client(id={self.id}, username={self.username})>"


class Playlist(Base):
    """
    Playlist refreshed by the background worker. url is either a file:// URL
    (local upload, parsed by the parsing service) or an http(s) URL. The
    master playlist has no url; its entries live in the streams table.
    """
    __tablename__ = "playlists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)
    priority = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default=PlaylistStatus.VERIFICANDO.value, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="playlists")
    streams = relationship("Stream", back_populates="playlist", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_playlist_status", status),
        Index("idx_playlist_name", name),
    )

    @property
    def is_master(self) -> bool:
        return self.name == MASTER_PLAYLIST_NAME

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "fileName": self.file_name,
            "priority": self.priority,
            "status": self.status,
            "ownerId": self.owner_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Playlist(id={self.id}, name={self.name}, status={self.status})>"


class Stream(Base):
    """Single entry of the master catalog, unique by URL within its playlist."""
    __tablename__ = "streams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    playlist_id = Column(Integer, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(500), nullable=False)
    stream_url = Column(Text, nullable=False)
    stream_type = Column(String(10), default="CANAL", nullable=False)  # CANAL, FILME, SERIE
    group_title = Column(String(255), nullable=True)
    raw = Column(Text, nullable=True)  # Original #EXTINF line when imported from M3U
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    playlist = relationship("Playlist", back_populates="streams")

    __table_args__ = (
        UniqueConstraint("playlist_id", "stream_url", name="uq_stream_playlist_url"),
        Index("idx_stream_playlist", playlist_id),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "playlistId": self.playlist_id,
            "name": self.name,
            "streamUrl": self.stream_url,
            "streamType": self.stream_type,
            "groupTitle": self.group_title,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Stream(id={self.id}, name={self.name}, type={self.stream_type})>"
