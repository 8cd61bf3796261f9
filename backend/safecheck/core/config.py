"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.safecheck.core.config import settings
    print(settings.MAX_RETRY_ATTEMPTS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "SafeCheck Alerting Core"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8081",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Database ──
    DATABASE_URL: str = "sqlite:///safecheck.db"
    DATABASE_ECHO: bool = False  # log SQL queries

    # ── Check-in lifecycle ──
    OVERDUE_GRACE_HOURS: float = 4.0
    EXPIRY_HOURS: float = 24.0  # must exceed OVERDUE_GRACE_HOURS
    STATUS_DURATIONS_HOURS: List[int] = [1, 3, 6, 12, 24]
    DEFAULT_POSITIVE_RESPONSE: str = "YES"
    DEFAULT_NEGATIVE_RESPONSE: str = "NO"
    DEFAULT_QUESTION: str = "Is everything alright?"

    # ── Delivery ──
    PUSH_PROVIDER: str = "simulation"  # simulation | expo
    PUSH_API_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_TIMEOUT_SECONDS: float = 10.0
    PUSH_MAX_RETRIES: int = 1
    PUSH_BACKOFF_SECONDS: float = 0.5

    SMS_PROVIDER: str = "simulation"  # simulation | gateway | disabled
    SMS_GATEWAY_URL: Optional[str] = None
    SMS_API_KEY: Optional[str] = None
    SMS_TIMEOUT_SECONDS: float = 15.0

    # ── Offline queue ──
    MAX_RETRY_ATTEMPTS: int = 3
    QUEUE_MAX_SIZE: int = 500

    # ── Emergency fan-out ──
    FANOUT_MAX_WORKERS: int = 8

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
