"""
Pytest configuration and shared fixtures for backend tests.
"""
import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test config directory before importing modules
os.environ["CONFIG_DIR"] = "/tmp/restream_panel_test_config"
os.environ["DATA_DIR"] = "/tmp/restream_panel_test_config/data"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"

# Ensure test config directory exists
Path("/tmp/restream_panel_test_config").mkdir(parents=True, exist_ok=True)

from database import Base, get_db
from models import User, UserRole, SourcePlaylist, Client, ClientSourcePlaylist, Playlist, Stream  # noqa: F401
from job_queue import JobQueue
from playlist_cache import PlaylistCache


@pytest.fixture(scope="function")
def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    # Create all tables
    Base.metadata.create_all(bind=engine)
    yield engine
    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Session factory bound to the test engine, for workers that open their own sessions."""
    # expire_on_commit=False allows accessing object attributes after commit/close
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def panel_dirs(tmp_path):
    """Per-test filesystem layout mirroring the configured data directories."""
    dirs = SimpleNamespace(
        queue=tmp_path / "queue" / "new-clients",
        failed=tmp_path / "queue" / "failed",
        output=tmp_path / "M3U",
        sources=tmp_path / "source_playlists",
        imports=tmp_path / "master_import",
        temp=tmp_path / "tmp",
    )
    for path in vars(dirs).values():
        path.mkdir(parents=True, exist_ok=True)
    return dirs


@pytest.fixture
def playlist_cache():
    """A fresh playlist cache without the sweep task running."""
    return PlaylistCache(default_ttl=60, check_period=600)


@pytest.fixture
def job_queue(panel_dirs):
    return JobQueue(panel_dirs.queue)


@pytest.fixture
def admin_user(test_session):
    from tests.fixtures.factories import create_user
    return create_user(test_session, username="admin", role=UserRole.SUPER_ADMIN)


@pytest.fixture
def reseller_user(test_session, admin_user):
    from tests.fixtures.factories import create_user
    return create_user(test_session, username="reseller", role=UserRole.RESELLER, parent=admin_user)


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a user."""
    from auth import create_access_token

    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture(scope="function")
async def async_client(test_session, panel_dirs, playlist_cache, job_queue):
    """
    Create an async test client for the FastAPI app.
    Uses FastAPI's dependency_overrides to inject the test session and the
    per-test directories, and puts the cache and queue fixtures on app.state.
    """
    from httpx import AsyncClient, ASGITransport
    import dependencies
    from main import app

    # Override the get_db dependency with a function that yields test_session
    def override_get_db():
        try:
            yield test_session
        finally:
            pass  # Don't close - the test_session fixture handles cleanup

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_m3u_output_dir] = lambda: panel_dirs.output
    app.dependency_overrides[dependencies.get_source_playlist_dir] = lambda: panel_dirs.sources
    app.dependency_overrides[dependencies.get_master_import_dir] = lambda: panel_dirs.imports
    app.dependency_overrides[dependencies.get_temp_dir] = lambda: panel_dirs.temp
    app.dependency_overrides[dependencies.get_server_base_url] = lambda: "https://restream.test"
    app.state.playlist_cache = playlist_cache
    app.state.job_queue = job_queue

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        # Clear overrides after test
        app.dependency_overrides.clear()
