import logging
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "leaderboard.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_LOGGER = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Database - canonical path under project-root data directory
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # API
    CORS_ORIGINS: list[str] = ["*"]

    # Leaderboard ranking
    LEADERBOARD_TOP_N: int = 100  # "entered top-N" boundary and incremental update window
    LEADERBOARD_SNAPSHOT_LIMIT: int = 100  # Default page size for client snapshot requests
    LEADERBOARD_FULL_REFRESH_INTERVAL_SECONDS: int = 86400  # Daily rebuild; 0 disables

    # Delta broadcast
    WS_SEND_TIMEOUT_SECONDS: float = 5.0  # A subscriber slower than this is pruned

    # Update coordinator
    COORDINATOR_FAILURE_HISTORY: int = 100  # Recent dropped activity events kept for inspection

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        text = str(value or "INFO").strip().upper()
        if text not in _LOG_LEVELS:
            _LOGGER.warning("Unknown LOG_LEVEL, falling back to INFO", extra={"value": text})
            return "INFO"
        return text

    @field_validator("LEADERBOARD_TOP_N", "LEADERBOARD_SNAPSHOT_LIMIT")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Resolve relative SQLite paths against the project root."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text

        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{prefix}:memory:"
            absolute = Path(path_part).resolve() if path_part.startswith("/") else (_PROJECT_ROOT / path_part).resolve()
            return f"{prefix}{absolute}"

        return text

    class Config:
        # Load project-root .env first, then backend/.env as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
