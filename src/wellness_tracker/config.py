"""Application configuration."""

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    auth_webhook_token: str
    cache_dir: Path = Path(".wellness_cache")
    timezone: str = "UTC"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_timezone(raw: str | None) -> str:
    """Return a valid IANA timezone name, defaulting to UTC."""
    if raw is None:
        return "UTC"
    cleaned = raw.strip()
    if not cleaned:
        return "UTC"
    try:
        ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {cleaned}") from exc
    return cleaned
