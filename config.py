"""
config.py — Environment-based configuration using Pydantic Settings.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── Database ─────────────────────────────────────────────────────────
    # Empty means the in-memory repository is used.
    database_url: Optional[str] = None
    db_pool_min: int = 2
    db_pool_max: int = 10

    # ── AI Re-ranking ────────────────────────────────────────────────────
    openai_api_key: Optional[str] = None
    ai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 20.0
    ai_temperature: float = 0.7
    ai_max_tokens: int = 2500
    rerank_cache_ttl_seconds: int = 7200
    rerank_cache_max_entries: int = 512

    # ── Catalog Sources ──────────────────────────────────────────────────
    openbeautyfacts_api_url: str = "https://world.openbeautyfacts.org"
    beautyfeeds_api_url: str = "https://api.beautyfeeds.io/v1"
    beautyfeeds_api_key: Optional[str] = None
    reviews_api_url: Optional[str] = None
    reviews_api_key: Optional[str] = None
    http_timeout_seconds: float = 10.0

    # ── Pipeline ─────────────────────────────────────────────────────────
    enrichment_batch_size: int = 5
    persist_batch_size: int = 50
    collaborator_timeout_seconds: float = 10.0
    default_top_k: int = 10
    source_fetch_limit: int = 50
    # Format: "brand one,brand two"
    blacklisted_brands: str = ""

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    log_file: Optional[str] = None

    # ── Server ───────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    # ── Computed Properties ──────────────────────────────────────────────

    @property
    def asyncpg_dsn(self) -> Optional[str]:
        """Convert SQLAlchemy-style URL to plain asyncpg DSN."""
        url = self.database_url
        if not url:
            return None
        for prefix in ["postgresql+asyncpg://", "postgresql://"]:
            if url.startswith(prefix):
                return "postgresql://" + url[len(prefix):]
        return url

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def blacklisted_brand_list(self) -> list[str]:
        return [b.strip().lower() for b in self.blacklisted_brands.split(",") if b.strip()]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid = {"json", "text"}
        if v.lower() not in valid:
            raise ValueError(f"log_format must be one of {valid}")
        return v.lower()

    @field_validator("enrichment_batch_size", "persist_batch_size", "default_top_k")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


# ── Logging ──────────────────────────────────────────────────────────────────

class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    if settings.log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(settings.log_level)
