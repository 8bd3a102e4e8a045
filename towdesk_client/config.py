"""Configuration helpers for the TowDesk client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_TIMEOUT = 15


@dataclass(slots=True)
class ClientConfig:
    """Connection settings for the client."""

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: Optional[str] = None
    timeout_seconds: int = DEFAULT_TIMEOUT


def load_config() -> ClientConfig:
    """Load settings from the environment and an optional `.env` file."""

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return ClientConfig(
        api_base_url=os.getenv("TOWDESK_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_token=os.getenv("TOWDESK_API_TOKEN"),
        timeout_seconds=int(os.getenv("TOWDESK_TIMEOUT", DEFAULT_TIMEOUT)),
    )


__all__ = ["ClientConfig", "load_config"]
