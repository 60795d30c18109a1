from datetime import timedelta
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # STATUS CACHE - source priority and staleness windows
    # =================================================================
    STATUS_CACHE_TTL_SECONDS: float = 300.0  # 5 minutes
    API_CONFLICT_WINDOW_SECONDS: float = 30.0
    LOCAL_WEBSOCKET_GUARD_SECONDS: float = 10.0
    STATUS_CLEANUP_INTERVAL_SECONDS: float = 120.0  # 2 minutes

    # =================================================================
    # CHAT
    # =================================================================
    MESSAGE_CLEANUP_INTERVAL_SECONDS: float = 300.0
    RETIRED_TEMP_ID_LIMIT: int = 500
    DISPLAY_TIMEZONE: str = "UTC"
    MESSAGE_HISTORY_LIMIT: int = 100  # per conversation
    MESSAGE_HISTORY_MAX_CONVERSATIONS: int = 50
    LAST_MESSAGE_RETENTION_DAYS: int = 30
    LAST_MESSAGE_CLEANUP_INTERVAL_SECONDS: float = 3600.0

    # =================================================================
    # ARCHIVE
    # =================================================================
    ARCHIVE_CLEANUP_INTERVAL_SECONDS: float = 3600.0
    ARCHIVE_EXPIRING_SOON_HOURS: int = 24

    # =================================================================
    # PERSISTENT STORE
    # =================================================================
    STORE_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 10
    ARCHIVE_STORAGE_KEY: str = "marketsync:archived_chats"
    LAST_MESSAGE_STORAGE_KEY: str = "marketsync:last_messages"
    MESSAGE_HISTORY_STORAGE_KEY: str = "marketsync:message_history"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def status_ttl(self) -> timedelta:
        return timedelta(seconds=self.STATUS_CACHE_TTL_SECONDS)

    def api_conflict_window(self) -> timedelta:
        return timedelta(seconds=self.API_CONFLICT_WINDOW_SECONDS)

    def local_websocket_guard(self) -> timedelta:
        return timedelta(seconds=self.LOCAL_WEBSOCKET_GUARD_SECONDS)

    def get_job_config(self) -> dict:
        """
        Get periodic job intervals (seconds).
        Development runs the sweeps more often so expiry is easy to observe.
        """
        config = {
            "status_cache_cleanup": self.STATUS_CLEANUP_INTERVAL_SECONDS,
            "message_cleanup": self.MESSAGE_CLEANUP_INTERVAL_SECONDS,
            "archive_cleanup": self.ARCHIVE_CLEANUP_INTERVAL_SECONDS,
            "last_message_cleanup": self.LAST_MESSAGE_CLEANUP_INTERVAL_SECONDS,
        }

        if self.environment == "development":
            config["archive_cleanup"] = min(config["archive_cleanup"], 600.0)

        return config


settings = Settings()
