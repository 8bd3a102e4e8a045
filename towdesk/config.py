from __future__ import annotations

import logging.config
import os
from pathlib import Path
from typing import Any, Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "TowDesk"
    environment: str = "development"
    host: str = os.getenv("TD_HOST", "127.0.0.1")
    port: int = int(os.getenv("TD_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("TD_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    sqlite_path: Path = Path(os.getenv("TD_SQLITE_PATH", "./data/towdesk.db"))
    sqlite_busy_timeout_ms: int = int(os.getenv("TD_SQLITE_BUSY_TIMEOUT_MS", "5000"))

    timezone: str = os.getenv("TZ", "America/New_York")
    log_level: str = os.getenv("TD_LOG_LEVEL", "INFO")

    token_secret: str = os.getenv("TD_TOKEN_SECRET", "change-me")
    token_algorithm: str = "HS256"
    token_ttl_minutes: int = int(os.getenv("TD_TOKEN_TTL_MINUTES", str(60 * 12)))

    audit_log_page_size: int = 100
    company_name: str = os.getenv("TD_COMPANY_NAME", "Apex Towing")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    def logging_config(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": "WARNING",
            },
            "loggers": {
                "towdesk": {
                    "handlers": ["console"],
                    "level": self.log_level.upper(),
                    "propagate": False,
                },
            },
        }


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


def configure_logging() -> None:
    logging.config.dictConfig(settings.logging_config())
