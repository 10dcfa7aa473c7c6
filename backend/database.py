"""
SQLite database setup for the panel.

Holds users, clients, source playlists, refreshable playlists and the
master catalog's streams. Each process (API, client processor, background
worker) calls init_db() once at startup.
"""
import logging
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)

# SQLAlchemy Base for model declarations
Base = declarative_base()

# Engine and session factory (initialized on startup)
_engine = None
_SessionLocal = None


def get_database_url() -> str:
    """Get the database URL from settings."""
    return get_settings().get_database_url()


def init_db(database_url: str | None = None) -> None:
    """Initialize the database, creating tables if they don't exist."""
    global _engine, _SessionLocal

    database_url = database_url or get_database_url()
    try:
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initializing panel database at {database_url}")

        connect_args = {}
        engine_kwargs = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool

        _engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,  # Set to True for SQL debugging
            **engine_kwargs,
        )
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

        # Import models to register them with Base
        import models  # noqa: F401

        Base.metadata.create_all(bind=_engine)
        logger.info("Panel database initialized successfully")
    except Exception as e:
        logger.exception(f"Failed to initialize database: {e}")
        raise


def get_session() -> Session:
    """Get a database session. Use as context manager or close manually."""
    if _SessionLocal is None:
        logger.error("Attempted to get database session before initialization")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def get_session_factory():
    """Get the session factory for long-running workers."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is closed after the request."""
    session = get_session()
    try:
        yield session
    finally:
        session.close()

