"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


DEFAULT_HERO_PRICE_LADDER = (
    2_500_000,
    2_200_000,
    2_000_000,
    1_800_000,
    1_600_000,
    1_400_000,
    1_200_000,
    1_000_000,
    800_000,
    600_000,
)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int_tuple(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return tuple(int(item) for item in value.split(",") if item.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a comma separated list of integers") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str = "Banner Slot Reservation Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = Path("data/banner_slots.db")
    database_timeout_seconds: float = 5.0

    hero_price_ladder: tuple[int, ...] = DEFAULT_HERO_PRICE_LADDER
    search_top_daily_rate: int = 500_000

    default_lock_minutes: int = 2880
    max_lock_minutes: int = 10080
    max_items_per_application: int = 366
    availability_max_range_days: int = 366

    reaper_enabled: bool = True
    reaper_interval_seconds: float = 180.0
    reaper_batch_size: int = 200

    application_page_size_max: int = 100


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from the environment once per process."""
    return Settings(
        app_name=_env_str("BANNER_APP_NAME", Settings.app_name),
        app_version=_env_str("BANNER_APP_VERSION", Settings.app_version),
        log_level=_env_str("LOG_LEVEL", Settings.log_level),
        database_path=Path(_env_str("BANNER_DATABASE_PATH", str(Settings.database_path))),
        database_timeout_seconds=_env_float(
            "BANNER_DATABASE_TIMEOUT_SECONDS", Settings.database_timeout_seconds
        ),
        hero_price_ladder=_env_int_tuple("BANNER_HERO_PRICE_LADDER", DEFAULT_HERO_PRICE_LADDER),
        search_top_daily_rate=_env_int(
            "BANNER_SEARCH_TOP_DAILY_RATE", Settings.search_top_daily_rate
        ),
        default_lock_minutes=_env_int(
            "BANNER_DEFAULT_LOCK_MINUTES", Settings.default_lock_minutes
        ),
        max_lock_minutes=_env_int("BANNER_MAX_LOCK_MINUTES", Settings.max_lock_minutes),
        max_items_per_application=_env_int(
            "BANNER_MAX_ITEMS_PER_APPLICATION", Settings.max_items_per_application
        ),
        availability_max_range_days=_env_int(
            "BANNER_AVAILABILITY_MAX_RANGE_DAYS", Settings.availability_max_range_days
        ),
        reaper_enabled=_env_bool("BANNER_REAPER_ENABLED", Settings.reaper_enabled),
        reaper_interval_seconds=_env_float(
            "BANNER_REAPER_INTERVAL_SECONDS", Settings.reaper_interval_seconds
        ),
        reaper_batch_size=_env_int("BANNER_REAPER_BATCH_SIZE", Settings.reaper_batch_size),
        application_page_size_max=_env_int(
            "BANNER_APPLICATION_PAGE_SIZE_MAX", Settings.application_page_size_max
        ),
    )
