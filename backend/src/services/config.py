"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.query_tree import DEFAULT_QUERY_TEXT

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "library.db"
DEFAULT_SNAPSHOT_KEY = "qm_last_tree"
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    database_path: Path = Field(..., description="SQLite file holding library snapshots")
    snapshot_key: str = Field(
        default=DEFAULT_SNAPSHOT_KEY,
        min_length=1,
        description="Storage key of the auto-saved library snapshot",
    )
    default_query_text: str = Field(
        default=DEFAULT_QUERY_TEXT, description="SQL text given to newly added queries"
    )
    log_level: str = Field(default="INFO", description="Root logging level")
    cors_origins: List[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),
        description="Origins allowed to call the HTTP API",
    )

    @field_validator("database_path", mode="before")
    @classmethod
    def _normalize_database_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("QM_DATABASE_PATH is required")
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Optional[str]) -> str:
        level = (value or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str] | None) -> List[str]:
        if value is None:
            return list(DEFAULT_CORS_ORIGINS)
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    config = AppConfig(
        database_path=_read_env("QM_DATABASE_PATH", str(DEFAULT_DB_PATH)),
        snapshot_key=_read_env("QM_SNAPSHOT_KEY", DEFAULT_SNAPSHOT_KEY),
        default_query_text=_read_env("QM_DEFAULT_QUERY_TEXT", DEFAULT_QUERY_TEXT),
        log_level=_read_env("QM_LOG_LEVEL", "INFO"),
        cors_origins=_read_env("QM_CORS_ORIGINS"),
    )
    # Ensure the data directory exists for downstream services.
    config.database_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "PROJECT_ROOT",
    "DEFAULT_DB_PATH",
    "DEFAULT_SNAPSHOT_KEY",
]
