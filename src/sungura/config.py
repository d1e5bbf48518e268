"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates required fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional (all have defaults):
        API_BASE_URL: Base URL of the farm REST API (including /api/v1)
        API_TOKEN: Bearer token sent with authenticated calls
        APP_ORIGIN: Origin the offline controller installs assets from
        CACHE_DIR: Directory for durable caches and snapshots
        CACHE_PREFIX / CACHE_VERSION: Compose the current cache store name
        CACHE_QUOTA_BYTES: Storage quota used for usage estimation
        QUOTA_PURGE_THRESHOLD: Usage ratio at which stale stores are purged
        RETRY_MAX_ATTEMPTS / RETRY_DELAY_SECONDS: Reconciliation retry policy
        REQUEST_TIMEOUT: HTTP timeout in seconds
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote API
    API_BASE_URL: str = Field(
        default="http://localhost:5000/api/v1",
        description="Farm REST API base URL",
    )
    API_TOKEN: str | None = Field(default=None, description="Bearer token for the API")
    APP_ORIGIN: str = Field(
        default="http://localhost:3000",
        description="Origin of the application shell served to clients",
    )
    REQUEST_TIMEOUT: float = Field(
        default=30.0, gt=0.0, description="HTTP request timeout in seconds"
    )

    # Offline cache
    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")
    CACHE_PREFIX: str = Field(default="sungura-master", description="Cache store prefix")
    CACHE_VERSION: int = Field(default=2, ge=1, description="Current cache store version")
    CACHE_QUOTA_BYTES: int = Field(
        default=50 * 1024 * 1024, gt=0, description="Storage quota in bytes"
    )
    QUOTA_PURGE_THRESHOLD: float = Field(
        default=0.8,
        description="Usage/quota ratio at which stale stores are purged before writes",
    )
    OFFLINE_URL: str = Field(default="/offline.html", description="Offline fallback page")
    NOTIFICATION_TITLE: str = Field(
        default="Sungura Master", description="Title used for push notifications"
    )

    # Reconciliation
    RETRY_MAX_ATTEMPTS: int = Field(
        default=2, ge=1, le=10, description="Attempts per reconciliation fetch"
    )
    RETRY_DELAY_SECONDS: float = Field(
        default=2.0, ge=0.0, description="Fixed wait between reconciliation attempts"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("API_BASE_URL", "APP_ORIGIN")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that URLs are absolute http(s) URLs without trailing slash."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"must be an absolute http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("QUOTA_PURGE_THRESHOLD")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate that the purge threshold is a ratio in (0, 1]."""
        if not 0.0 < v <= 1.0:
            raise ValueError("QUOTA_PURGE_THRESHOLD must be within (0, 1]")
        return v

    @model_validator(mode="after")
    def validate_offline_url(self) -> Settings:
        """Ensure the offline page is a path on the app origin."""
        if not self.OFFLINE_URL.startswith("/"):
            raise ValueError("OFFLINE_URL must be an absolute path starting with '/'")
        return self

    @property
    def current_cache_name(self) -> str:
        """Name of the one cache store that is current."""
        return f"{self.CACHE_PREFIX}-v{self.CACHE_VERSION}"

    @property
    def cache_db_path(self) -> Path:
        """SQLite file backing the durable cache stores."""
        return self.CACHE_DIR / "offline_cache.db"

    @property
    def snapshot_db_path(self) -> Path:
        """SQLite file backing the persisted entity snapshots."""
        return self.CACHE_DIR / "snapshots.db"

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings with the API token redacted for display."""
        token = self.API_TOKEN
        if token is not None:
            token = f"{token[:6]}...{token[-4:]}" if len(token) > 12 else "***"

        return {
            "API_BASE_URL": self.API_BASE_URL,
            "API_TOKEN": token,
            "APP_ORIGIN": self.APP_ORIGIN,
            "REQUEST_TIMEOUT": self.REQUEST_TIMEOUT,
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_STORE": self.current_cache_name,
            "CACHE_QUOTA_BYTES": self.CACHE_QUOTA_BYTES,
            "QUOTA_PURGE_THRESHOLD": self.QUOTA_PURGE_THRESHOLD,
            "OFFLINE_URL": self.OFFLINE_URL,
            "RETRY_MAX_ATTEMPTS": self.RETRY_MAX_ATTEMPTS,
            "RETRY_DELAY_SECONDS": self.RETRY_DELAY_SECONDS,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
