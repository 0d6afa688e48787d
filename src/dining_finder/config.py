"""Environment-driven settings for the API server and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Sequence

from dotenv import load_dotenv

DEFAULT_GEMINI_MODELS = (
    "gemini-2.5-flash",
    "gemini-pro-latest",
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash",
)
DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"
DEFAULT_MENU_CACHE_MINUTES = 60
DEFAULT_MAX_BODY_BYTES = 1_000_000


def _env_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(key: str, default: Sequence[str]) -> tuple[str, ...]:
    value = os.getenv(key)
    if not value:
        return tuple(default)
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass
class ServerConfig:
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "stanford_menu"
    db_user: str = "postgres"
    db_password: str = ""
    db_ssl: bool = False
    google_maps_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_models: Sequence[str] = field(default_factory=lambda: DEFAULT_GEMINI_MODELS)
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    port: int = 3001
    api_base_url: str = "http://localhost:3001"
    menu_cache_minutes: int = DEFAULT_MENU_CACHE_MINUTES
    timezone: str = "America/Los_Angeles"
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "ServerConfig":
        """Build the config from the process environment (and ``.env`` when present)."""
        if dotenv:
            load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            db_host=os.getenv("DB_HOST", "localhost"),
            db_port=int(os.getenv("DB_PORT", "5432")),
            db_name=os.getenv("DB_NAME", "stanford_menu"),
            db_user=os.getenv("DB_USER", "postgres"),
            db_password=os.getenv("DB_PASSWORD", ""),
            db_ssl=_env_bool("DB_SSL", False),
            google_maps_key=os.getenv("GOOGLE_MAPS_KEY") or None,
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_models=_env_list("GEMINI_MODELS", DEFAULT_GEMINI_MODELS),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
            port=int(os.getenv("PORT", "3001")),
            api_base_url=os.getenv("API_BASE_URL", "http://localhost:3001"),
            menu_cache_minutes=int(os.getenv("MENU_CACHE_MINUTES", str(DEFAULT_MENU_CACHE_MINUTES))),
            timezone=os.getenv("DINING_TIMEZONE", "America/Los_Angeles"),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(DEFAULT_MAX_BODY_BYTES))),
        )
