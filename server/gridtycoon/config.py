"""Configuration helpers for the Grid Tycoon coordination service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


DEFAULT_OVERPASS_SERVERS = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.openstreetmap.fr/api/interpreter",
)


def _env_list(name: str, default: tuple[str, ...]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    The Supabase service role key wins over the anon key when both are present so
    coordinator deployments can bypass row level security.
    """

    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_anon_key: Optional[str] = os.getenv("SUPABASE_ANON_KEY")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    overpass_servers: list[str] = field(
        default_factory=lambda: _env_list("OVERPASS_SERVERS", DEFAULT_OVERPASS_SERVERS)
    )
    overpass_timeout: float = _env_float("OVERPASS_TIMEOUT", 300.0)
    overpass_retry_delay: float = _env_float("OVERPASS_RETRY_DELAY", 2.0)

    @property
    def supabase_key(self) -> Optional[str]:
        """Return the key used to authenticate against Supabase."""

        return self.supabase_service_role_key or self.supabase_anon_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
