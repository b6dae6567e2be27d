"""Runtime settings loaded from the environment."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings; every field can be set via ``PROJECTBOARD_<NAME>``."""

    model_config = SettingsConfigDict(env_prefix="PROJECTBOARD_", env_file=".env", extra="ignore")

    # Storage
    db_path: Path = Path(".projectboard") / "board.db"

    # Logging
    log_level: str = "WARNING"

    # Sync
    load_timeout_seconds: float = Field(default=10.0, gt=0)
    write_retry_attempts: int = Field(default=3, ge=1)
    write_retry_backoff_seconds: float = Field(default=0.2, ge=0)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()
