"""
LifeOS configuration — all environment variables in one place.

Read from environment at runtime. Without DATABASE_URL the backend runs on the
in-memory event log, which is what local development and the tests use.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = int(os.environ.get("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.environ.get("DB_POOL_MAX_SIZE", "20"))

    # Kernel
    DAILY_SUGGESTION_CAP: int = int(os.environ.get("DAILY_SUGGESTION_CAP", "3"))

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    @property
    def USE_POSTGRES(self) -> bool:
        return bool(self.DATABASE_URL)


# Singleton instance
settings = Settings()
