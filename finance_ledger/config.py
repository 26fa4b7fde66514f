# config.py
# Role: Application settings for the finance ledger API.
#       Values come from LEDGER_* environment variables or a local .env file.

"""
Configuration for the finance ledger.

All runtime knobs live here so it is easy to see what the app depends on.
Settings are validated once at startup and cached; call
get_settings.cache_clear() to reload them (tests do this).
"""

import os
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (one level above this package)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Default SQLite location: <project_root>/database/finance.db
DEFAULT_DB_PATH = os.path.join(BASE_DIR, "database", "finance.db")


class Settings(BaseSettings):
    """Settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection URL",
    )

    # App
    app_title: str = Field(default="Finance Ledger")
    default_currency: str = Field(default="EUR", min_length=3, max_length=3)
    default_page_size: int = Field(default=10, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=1000)
    seed_global_categories: bool = Field(
        default=True,
        description="Insert the default global categories on startup",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output",
    )

    # Recurring transactions scheduler
    scheduler_enabled: bool = Field(default=True)
    recurring_run_hour: int = Field(
        default=0,
        ge=0,
        le=23,
        description="Hour of day (UTC) at which due recurring transactions are posted",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Return the cached application settings."""
    return Settings()
