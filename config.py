"""
config.py — Environment-based configuration using Pydantic Settings.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "data" / "daikin_r32_schema.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "HVAC Replacement Expert"
    app_env: str = "development"

    # ── Schema & Catalog ─────────────────────────────────────────────────
    schema_path: str = str(DEFAULT_SCHEMA_PATH)
    catalog_path: Optional[str] = None  # external catalog JSON; generated when unset

    # ── Matching ─────────────────────────────────────────────────────────
    match_tonnage_tolerance: float = 0.10  # ±10% of requested tons
    max_search_results: int = 25

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    log_file: Optional[str] = None

    # ── Server ───────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False

    # ── Computed Properties ──────────────────────────────────────────────

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

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

    @field_validator("match_tonnage_tolerance")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("match_tonnage_tolerance must be in [0, 1)")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


# ============================================================
# Logging
# ============================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

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
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(settings.log_level)
