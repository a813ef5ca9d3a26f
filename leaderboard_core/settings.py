from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import ALL

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    # Seconds before an initial collection fetch counts as failed (0 disables)
    fetch_timeout: float = Field(10.0, ge=0)
    # Apply queue bound; 0 means unbounded. Notifications arriving while the
    # queue is full wait in an ordered backlog instead of being dropped.
    queue_maxsize: int = Field(0, ge=0)
    # Refuse scoring-mode edits through the write path once results exist
    lock_scoring_mode: bool = True
    default_category: str = ALL
    default_gender: str = ALL
    # Load the demo roster into the in-memory store on startup
    seed_sample_data: bool = False
    # Level for the leaderboard_core loggers; unset leaves logging untouched
    log_level: Optional[LogLevel] = None

    model_config = SettingsConfigDict(env_prefix="LEADERBOARD_", env_file=".env", extra="ignore")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v


def configure_logging(settings: Settings) -> None:
    """Apply `settings.log_level` to the package logger."""
    if settings.log_level is not None:
        logging.getLogger("leaderboard_core").setLevel(settings.log_level)


@lru_cache
def get_settings() -> Settings:
    return Settings()
