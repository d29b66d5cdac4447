from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Last.fm
    LASTFM_API_KEY: str = ""
    LASTFM_API_SECRET: str = ""
    LASTFM_SESSION_KEY: str = ""
    LASTFM_USERNAME: str = ""
    LASTFM_BASE_URL: str = "https://ws.audioscrobbler.com/2.0/"

    # Media library
    LIBRARY_SNAPSHOT_PATH: str = "/data/library.json"

    # Persistence
    STATE_PATH: str = "/data/state.json"
    SYNC_LOG_PATH: str = "/data/sync_log.json"
    PERSIST_ENABLED: bool = True

    # Sync Logic
    DEFAULT_TRACK_DURATION_SECONDS: int = 180
    SCROBBLE_BATCH_SIZE: int = 50
    SCROBBLE_LOOKBACK_SECONDS: int = 14 * 86400  # Last.fm acceptance window
    CACHE_RETENTION_SECONDS: int = 30 * 86400
    CACHE_PRUNE_INTERVAL_SECONDS: int = 21600  # 6h
    HISTORY_FETCH_LIMIT: int = 50
    SYNC_LOG_MAX_ENTRIES: int = 50

    # Background scheduling
    BACKGROUND_TASK_IDENTIFIER: str = "scrobsync.refresh"
    BACKGROUND_REFRESH_INTERVAL_SECONDS: int = 1800  # 30m
    BACKGROUND_MIN_INTERVAL_SECONDS: int = 900  # 15m
    BACKGROUND_TASK_DEADLINE_SECONDS: int = 30
    CONNECTIVITY_PROBE_URL: str = "https://ws.audioscrobbler.com/"
    CONNECTIVITY_TIMEOUT_SECONDS: float = 5.0
    STATUS_RESET_SECONDS: float = 2.0

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
