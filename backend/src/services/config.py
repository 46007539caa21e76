"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "mindmaps.db"


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    db_path: Path = Field(..., description="SQLite file backing the map store")
    default_provider: Optional[str] = Field(
        default=None,
        description="Preferred provider when a request does not name one",
    )
    provider_max_retries: int = Field(
        default=3, description="Retries after the first failed backend call"
    )
    provider_retry_base_delay: float = Field(
        default=1.0, description="Base backoff delay in seconds (doubles per retry)"
    )
    provider_retry_max_jitter: float = Field(
        default=1.0, description="Upper bound of random jitter added to each delay"
    )
    provider_timeout_seconds: float = Field(
        default=60.0, description="Timeout for a single backend HTTP call"
    )
    provider_status_ttl_seconds: float = Field(
        default=300.0, description="How long a provider availability check is reused"
    )
    summary_cache_ttl_seconds: float = Field(
        default=3600.0, description="How long a stored map summary is served as-is"
    )

    @field_validator("db_path", mode="before")
    @classmethod
    def _normalize_db_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("MINDMAP_DB_PATH is required")
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("default_provider", mode="before")
    @classmethod
    def _clean_provider(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().lower()
        return cleaned or None

    @field_validator("provider_max_retries")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("PROVIDER_MAX_RETRIES cannot be negative")
        return value

    @field_validator("provider_retry_base_delay", "provider_retry_max_jitter")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Retry delays cannot be negative")
        return value

    @field_validator(
        "provider_timeout_seconds",
        "provider_status_ttl_seconds",
        "summary_cache_ttl_seconds",
    )
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and TTLs must be positive")
        return value


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    config = AppConfig(
        db_path=_read_env("MINDMAP_DB_PATH", str(DEFAULT_DB_PATH)),
        default_provider=_read_env("DEFAULT_AI_PROVIDER"),
        provider_max_retries=int(_read_env("PROVIDER_MAX_RETRIES", "3")),
        provider_retry_base_delay=float(_read_env("PROVIDER_RETRY_BASE_DELAY", "1.0")),
        provider_retry_max_jitter=float(_read_env("PROVIDER_RETRY_MAX_JITTER", "1.0")),
        provider_timeout_seconds=float(_read_env("PROVIDER_TIMEOUT_SECONDS", "60")),
        provider_status_ttl_seconds=float(_read_env("PROVIDER_STATUS_TTL_SECONDS", "300")),
        summary_cache_ttl_seconds=float(_read_env("SUMMARY_CACHE_TTL_SECONDS", "3600")),
    )
    # Ensure the database directory exists for downstream services.
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "get_config", "reload_config", "PROJECT_ROOT", "DEFAULT_DB_PATH"]
