from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CT_", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "CrewTrack"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8080

    sqlite_path: Path = Path("./data/crewtrack.db")

    timezone: str = os.getenv("TZ", "UTC")
    log_level: str = "INFO"

    # Capacity assumption used by the utilization KPI.
    available_person_hours_per_day: float = Field(default=8.0, gt=0)
    # Hint for clients that poll live (timer-inclusive) values.
    live_refresh_seconds: int = Field(default=30, ge=1)

    min_personnel: int = 1
    max_personnel: int = 100
    max_duration_hours: int = 500
    max_quantity: float = 1_000_000.0
    min_productivity_rate: float = 0.01
    max_productivity_rate: float = 10_000.0

    # Local working hours used for crew planning.
    workday_start_hour: int = Field(default=7, ge=0, le=23)
    workday_end_hour: int = Field(default=15, ge=1, le=24)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return str(value or "INFO").strip().upper()

    @field_validator("workday_end_hour")
    @classmethod
    def _workday_end_after_start(cls, value: int, info) -> int:
        start = info.data.get("workday_start_hour")
        if start is not None and value <= start:
            raise ValueError("workday_end_hour must be later than workday_start_hour")
        return value


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
