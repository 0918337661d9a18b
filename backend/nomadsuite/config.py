from __future__ import annotations

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "NomadSuite"
    environment: str = os.getenv("NS_ENVIRONMENT", "development")
    host: str = os.getenv("NS_HOST", "127.0.0.1")
    port: int = int(os.getenv("NS_PORT", "8080"))
    log_level: str = os.getenv("NS_LOG_LEVEL", "INFO")

    sqlite_path: Path = Path(os.getenv("NS_SQLITE_PATH", "./data/nomadsuite.db"))
    export_dir: Path = Path(os.getenv("NS_EXPORT_DIR", "./data/exports"))

    # "today" for open trips and rolling windows is taken in this zone
    timezone: str = os.getenv("TZ", "UTC")

    residency_threshold_days: int = int(os.getenv("NS_RESIDENCY_THRESHOLD_DAYS", "183"))
    residency_warning_days: int = int(os.getenv("NS_RESIDENCY_WARNING_DAYS", "150"))
    schengen_limit_days: int = int(os.getenv("NS_SCHENGEN_LIMIT_DAYS", "90"))
    schengen_window_days: int = int(os.getenv("NS_SCHENGEN_WINDOW_DAYS", "180"))
    schengen_warning_days: int = int(os.getenv("NS_SCHENGEN_WARNING_DAYS", "72"))

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return str(value or "INFO").strip().upper()


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
