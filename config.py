"""
Configuration settings for the fastfacts fluency engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FASTFACTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Persistence
    # ========================================
    database_url: str = Field(
        default="sqlite:///~/.fastfacts/progress.db",
        description="SQLAlchemy URL for the local progress store",
    )

    # ========================================
    # Progress API (optional remote backend)
    # ========================================
    api_base_url: str | None = Field(
        default=None,
        description="Base URL of the remote progress API; local store is used when unset",
    )
    api_timeout_seconds: float = Field(
        default=10.0,
        description="Request timeout for the progress API",
    )

    # ========================================
    # Learner
    # ========================================
    user_id: str = Field(
        default="local",
        description="Learner identifier used by the CLI",
    )
    track_id: str = Field(
        default="TRACK1",
        description="Default track drilled by the CLI",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level for the stderr sink",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated at 5 MB)",
    )

    # ========================================
    # Progress Outbox
    # ========================================
    outbox_max_retries: int = Field(
        default=5,
        description="Attempts before a stage advance is reported as not saved",
    )
    outbox_base_delay_seconds: float = Field(
        default=1.0,
        description="First retry delay; doubles on each failed attempt",
    )
    outbox_max_delay_seconds: float = Field(
        default=30.0,
        description="Upper bound on the retry delay",
    )

    # ========================================
    # Session Activity
    # ========================================
    activity_dedupe_seconds: float = Field(
        default=5.0,
        description="Repeated stage entries inside this window are dropped",
    )
    activity_throttle_seconds: float = Field(
        default=0.5,
        description="Entries for the stage just attempted are throttled inside this window",
    )
    activity_max_attempts: int = Field(
        default=3,
        description="Tries per stage entry before it is given up",
    )
    activity_retry_delay_seconds: float = Field(
        default=1.0,
        description="First retry delay for a stage entry; doubles on each failure",
    )

    # ========================================
    # Drill Timing
    # ========================================
    accuracy_window_seconds: float = Field(
        default=12.0,
        description="Single answer window for accuracy practice",
    )
    random_seed: int | None = Field(
        default=None,
        description="Seed for item selection (reproducible drills)",
    )

    def get_outbox_config(self) -> dict[str, float]:
        """Get outbox retry configuration as a dictionary."""
        return {
            "max_retries": self.outbox_max_retries,
            "base_delay": self.outbox_base_delay_seconds,
            "max_delay": self.outbox_max_delay_seconds,
        }

    def get_activity_config(self) -> dict[str, float]:
        """Get session activity delivery configuration as a dictionary."""
        return {
            "dedupe_seconds": self.activity_dedupe_seconds,
            "throttle_seconds": self.activity_throttle_seconds,
            "max_attempts": self.activity_max_attempts,
            "retry_delay": self.activity_retry_delay_seconds,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
