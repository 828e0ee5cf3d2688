from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import pytz

logger = logging.getLogger(__name__)

_TABLE_NAME_ENV = "ASSET_TABLE_NAME"
_TABLE_PATH_ENV = "ASSET_TABLE_PERSISTENCE_PATH"
_READINGS_ROOT_ENV = "READING_STORE_ROOT_PATH"
_STRATEGY_ENV = "CONSUMPTION_STRATEGY"
_ANALYSIS_DAYS_ENV = "ANALYSIS_DAYS"
_WORKER_COUNT_ENV = "RECALC_WORKER_COUNT"
_TIMEZONE_ENV = "LOCAL_TIMEZONE"
_REFILL_PERCENT_ENV = "REFILL_THRESHOLD_PERCENT"
_REFILL_VOLUME_ENV = "REFILL_THRESHOLD_VOLUME"
_NOISE_PERCENT_ENV = "NOISE_FLOOR_PERCENT"
_NOISE_VOLUME_ENV = "NOISE_FLOOR_VOLUME"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_KNOWN_STRATEGIES = ("regression", "summation")


@dataclass(frozen=True)
class Settings:
    asset_table_name: str
    asset_table_path: Optional[str]
    reading_store_root: Optional[str]
    consumption_strategy: str
    analysis_days: int
    recalc_workers: int
    timezone: str
    refill_threshold_percent: float
    refill_threshold_volume: float
    noise_floor_percent: float
    noise_floor_volume: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    """Parse a strictly positive integer from ``name``; anything else yields ``default``."""
    candidate = _read_str_env(name, "")
    try:
        parsed = int(candidate) if candidate else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    candidate = _read_str_env(name, "")
    try:
        parsed = float(candidate) if candidate else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_strategy(default: str) -> str:
    candidate = _read_str_env(_STRATEGY_ENV, default).lower()
    return candidate if candidate in _KNOWN_STRATEGIES else default


def _read_timezone(default: str) -> str:
    candidate = _read_str_env(_TIMEZONE_ENV, default)
    try:
        return pytz.timezone(candidate).zone
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r, using %s", candidate, default)
        return default


def _read_log_level(default: str) -> str:
    return _read_str_env(_LOG_LEVEL_ENV, default).upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        asset_table_name=_read_str_env(_TABLE_NAME_ENV, "assets"),
        asset_table_path=_read_optional_env(_TABLE_PATH_ENV, "./tmp/assets.json"),
        reading_store_root=_read_optional_env(_READINGS_ROOT_ENV, "./tmp/readings"),
        consumption_strategy=_read_strategy("regression"),
        analysis_days=_read_positive_int(_ANALYSIS_DAYS_ENV, 7),
        recalc_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        timezone=_read_timezone("UTC"),
        refill_threshold_percent=_read_positive_float(_REFILL_PERCENT_ENV, 10.0),
        refill_threshold_volume=_read_positive_float(_REFILL_VOLUME_ENV, 250.0),
        noise_floor_percent=_read_positive_float(_NOISE_PERCENT_ENV, 0.5),
        noise_floor_volume=_read_positive_float(_NOISE_VOLUME_ENV, 5.0),
        log_level=_read_log_level("INFO"),
    )
