from pydantic_settings import BaseSettings
import os
import logging
from pathlib import Path

# Set up logging
logger = logging.getLogger(__name__)

# Base directories (overridable for containers and tests)
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
DATA_DIR = Path(os.environ.get("DATA_DIR", str(CONFIG_DIR / "data")))


class PanelSettings(BaseSettings):
    """Panel settings from environment (for container config)."""
    config_dir: str = str(CONFIG_DIR)
    data_dir: str = str(DATA_DIR)
    database_url: str = ""  # Empty means SQLite file inside config_dir

    # Public base URL used when rewriting stream URLs into restream URLs
    server_base_url: str = "https://iptvfast.me"

    # Admin API
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Parsing microservice (loopback only)
    parser_service_url: str = "http://127.0.0.1:8083"
    parser_host: str = "127.0.0.1"
    parser_port: int = 8083

    # Filesystem layout; empty means a subdirectory of data_dir
    queue_dir: str = ""
    failed_jobs_dir: str = ""  # Empty disables the dead-letter move
    m3u_output_dir: str = ""
    source_playlist_dir: str = ""
    master_import_dir: str = ""

    # Playlist cache
    cache_ttl: int = 3600
    cache_check_period: int = 600

    # Background refresh worker
    refresh_interval: int = 300
    fetch_timeout: float = 15.0

    # Job queue watcher
    queue_stability_threshold: float = 2.0
    queue_poll_interval: float = 0.1
    queue_process_existing: bool = False

    # Authentication
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 12

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def get_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.config_dir) / 'panel.db'}"

    def _data_subdir(self, configured: str, name: str) -> Path:
        return Path(configured) if configured else Path(self.data_dir) / name

    @property
    def queue_path(self) -> Path:
        return self._data_subdir(self.queue_dir, "queue/new-clients")

    @property
    def failed_jobs_path(self) -> Path | None:
        return Path(self.failed_jobs_dir) if self.failed_jobs_dir else None

    @property
    def m3u_output_path(self) -> Path:
        return self._data_subdir(self.m3u_output_dir, "M3U")

    @property
    def source_playlist_path(self) -> Path:
        return self._data_subdir(self.source_playlist_dir, "source_playlists")

    @property
    def master_import_path(self) -> Path:
        return self._data_subdir(self.master_import_dir, "master_import")


# In-memory cache of settings
_cached_settings: PanelSettings | None = None


def get_settings() -> PanelSettings:
    """Get the current panel settings."""
    global _cached_settings

    if _cached_settings is None:
        _cached_settings = PanelSettings()
        logger.debug(f"Loaded settings, data_dir={_cached_settings.data_dir}")
    return _cached_settings


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.debug("Settings cache cleared")


def ensure_directories(settings: PanelSettings | None = None) -> None:
    """Ensure every directory the panel writes to exists."""
    settings = settings or get_settings()
    paths = [
        Path(settings.config_dir),
        settings.queue_path,
        settings.m3u_output_path,
        settings.source_playlist_path,
        settings.master_import_path,
    ]
    if settings.failed_jobs_path:
        paths.append(settings.failed_jobs_path)
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)
    logger.info(f"Ensured data directories exist under {settings.data_dir}")


def log_config_status():
    """Log the current configuration status for debugging."""
    settings = get_settings()
    logger.info(f"CONFIG_DIR: {settings.config_dir}")
    logger.info(f"Queue dir: {settings.queue_path} (exists: {settings.queue_path.exists()})")
    logger.info(f"M3U output dir: {settings.m3u_output_path}")
    logger.info(f"Source playlist dir: {settings.source_playlist_path}")
    logger.info(f"Parser service: {settings.parser_service_url}")

