"""
config.py — Environment configuration for the paper-trading backend.

Values come from the process environment, optionally seeded from a `.env`
file in the working directory (python-dotenv). Numeric values that fail to
parse fall back to their defaults.

Usage:
    settings = Settings.from_env()
    settings.allowed_origins   # ["http://localhost:3000", ...]
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger


# ─── Defaults ─────────────────────────────────────────────────────────────────

DEFAULT_PORT = 3001
DEFAULT_HOST = "0.0.0.0"
DEFAULT_ENV = "development"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:3002,http://localhost:3001"
DEFAULT_STARTING_CASH = 10_000.0

DEFAULT_TTL_REALTIME = 60
DEFAULT_TTL_HOURLY = 300
DEFAULT_TTL_DAILY = 900
DEFAULT_CHECK_PERIOD = 120

DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_HISTORY_TIMEOUT = 15.0


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer {}={!r}, using {}", name, raw, default)
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric {}={!r}, using {}", name, raw, default)
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the backend."""
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    env: str = DEFAULT_ENV
    cors_origin: str = DEFAULT_CORS_ORIGINS
    alphavantage_api_key: Optional[str] = None
    ttl_realtime: int = DEFAULT_TTL_REALTIME
    ttl_hourly: int = DEFAULT_TTL_HOURLY
    ttl_daily: int = DEFAULT_TTL_DAILY
    cache_check_period: int = DEFAULT_CHECK_PERIOD
    starting_cash: float = DEFAULT_STARTING_CASH
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    history_timeout: float = DEFAULT_HISTORY_TIMEOUT
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/backend.log"

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def allowed_origins(self) -> List[str]:
        origins = [o.strip() for o in self.cors_origin.split(",") if o.strip()]
        return origins

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from the environment (and `.env` when present)."""
        if dotenv:
            load_dotenv()
        log_file = os.getenv("LOG_FILE", "logs/backend.log")
        return cls(
            port=_env_int("PORT", DEFAULT_PORT),
            host=os.getenv("HOST", DEFAULT_HOST),
            env=os.getenv("APP_ENV", DEFAULT_ENV),
            cors_origin=os.getenv("CORS_ORIGIN") or DEFAULT_CORS_ORIGINS,
            alphavantage_api_key=os.getenv("ALPHAVANTAGE_API_KEY") or None,
            ttl_realtime=_env_int("CACHE_TTL_REALTIME", DEFAULT_TTL_REALTIME),
            ttl_hourly=_env_int("CACHE_TTL_HOURLY", DEFAULT_TTL_HOURLY),
            ttl_daily=_env_int("CACHE_TTL_DAILY", DEFAULT_TTL_DAILY),
            cache_check_period=_env_int("CACHE_CHECK_PERIOD", DEFAULT_CHECK_PERIOD),
            starting_cash=_env_float("STARTING_CASH", DEFAULT_STARTING_CASH),
            http_timeout=_env_float("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            history_timeout=_env_float("HISTORY_TIMEOUT", DEFAULT_HISTORY_TIMEOUT),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=log_file or None,
        )
