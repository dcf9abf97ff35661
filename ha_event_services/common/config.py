from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env at the repository root, next to the package.
    repo_root = Path(__file__).resolve().parents[2]
    return str(repo_root / ".env")


def load_env() -> None:
    """Load the env file (if present) without overriding real environment variables."""
    env_file = os.getenv("HA_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str
    service_name: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings read once per process. ``get_settings.cache_clear()`` re-reads them."""
    load_env()

    # SQLite by default so the services start without external infrastructure.
    database_url = os.getenv("DATABASE_URL", "sqlite:///./ha_event_services.db")
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    service_name = os.getenv("HA_SERVICE_NAME", "ha-event-services")

    return Settings(
        database_url=database_url,
        redis_url=redis_url,
        service_name=service_name,
    )
