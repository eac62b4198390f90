"""Environment-driven configuration for the EPP ledger service.

Every tunable lives on ``AppSettings`` so operators can answer "what does this
deployment do?" by reading a single ``.env`` file. The object is built once and
cached; tests that need different values construct their own instance.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "EPP Ledger"
    APP_ENV: str = "dev"
    BASE_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2])
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2] / "data")
    TZ: str = "America/Lima"

    DB_URL: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "DB_URL"),
    )

    API_KEY: str = ""
    AUTH_ALLOW_API_KEY: bool = True
    JWT_SECRET: str = "change-me"
    ERASE_SCOPE: str = "deliveries:erase"

    # Stock ledger and renewal policy
    DEFAULT_USEFUL_LIFE_MONTHS: int = 12
    RENEWAL_DUE_SOON_DAYS: int = 30
    RENEWAL_DEFAULT_HORIZON_DAYS: int = 30
    STOCK_CONFLICT_RETRIES: int = 3
    ENFORCE_SIGNATURE_ORDER: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    HOST: str = "0.0.0.0"
    PORT: int = 8090


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    if not settings.DB_URL:
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        settings.DB_URL = f"sqlite:///{settings.DATA_DIR / 'epp_ledger.db'}"
    return settings


settings = get_settings()
