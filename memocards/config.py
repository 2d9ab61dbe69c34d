"""
Configuration settings for memocards.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is prefixed with MEMOCARDS_, e.g. MEMOCARDS_DATABASE_URL.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MEMOCARDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    database_url: str = Field(
        default="sqlite:///~/.memocards/cards.db",
        description="SQLAlchemy URL of the card store",
    )
    echo_sql: bool = Field(
        default=False,
        description="Log every SQL statement",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated at 10 MB)",
    )

    # ========================================
    # Review Sessions
    # ========================================
    session_limit: int = Field(
        default=50,
        ge=1,
        description="Maximum cards queued per review session",
    )

    # ========================================
    # SM-2 Scheduling
    # ========================================
    initial_ease: float = Field(default=2.5, description="Ease factor of new cards")
    minimum_ease: float = Field(default=1.3, ge=1.3, description="Ease factor floor")
    maximum_ease: float = Field(default=3.0, description="Ease factor ceiling")
    first_interval_days: int = Field(
        default=1, ge=1, description="Interval after the first successful review"
    )
    relearning_interval_days: int = Field(
        default=1, ge=0, description="Interval after a failed review"
    )
    maximum_interval_days: int = Field(
        default=3650, ge=1, description="Hard cap on any interval"
    )
    hard_ease_delta: float = Field(default=-0.15, le=0.0)
    good_ease_delta: float = Field(default=0.0)
    easy_ease_delta: float = Field(default=0.15, ge=0.0)
    fail_ease_penalty: float = Field(default=0.20, ge=0.0)
    easy_bonus: float = Field(default=1.3, ge=1.0, description="Extra interval multiplier for EASY")

    @model_validator(mode="after")
    def _check_scheduling_bounds(self) -> Settings:
        if not self.minimum_ease <= self.initial_ease <= self.maximum_ease:
            raise ValueError("initial_ease must lie within [minimum_ease, maximum_ease]")
        if self.relearning_interval_days > self.first_interval_days:
            raise ValueError("relearning_interval_days cannot exceed first_interval_days")
        if self.maximum_interval_days < self.first_interval_days:
            raise ValueError("maximum_interval_days must be >= first_interval_days")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
