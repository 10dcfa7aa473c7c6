from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings, ensure_directories, log_config_status
from database import init_db
from errors import register_exception_handlers
from job_queue import JobQueue
from log_utils import configure_logging
from playlist_cache import PlaylistCache
from routers import auth, clients, playlists, source_playlists

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    ensure_directories(settings)
    init_db()
    log_config_status()

    app.state.playlist_cache = PlaylistCache(settings.cache_ttl, settings.cache_check_period)
    app.state.job_queue = JobQueue(settings.queue_path, settings.failed_jobs_path)
    app.state.playlist_cache.start()
    logger.info("[API] Restream panel API started")
    try:
        yield
    finally:
        await app.state.playlist_cache.stop()
        logger.info("[API] Restream panel API stopped")


app = FastAPI(
    title="Restream Panel",
    description="IPTV reseller panel: clients, source playlists and the master catalog",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(clients.router)
app.include_router(source_playlists.router)
app.include_router(playlists.router)


# Health check
@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "restream-panel"}


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
