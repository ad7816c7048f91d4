"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _read_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw_value}'") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    horizon_minutes: int
    sample_interval_minutes: int
    peak_window_minutes: int
    default_queue_timeout_minutes: int
    max_sources: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; call ``cache_clear`` to reload."""
    settings = Settings(
        app_name=os.getenv("APP_NAME", "Demand Capacity Simulator"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        horizon_minutes=_read_int("SIMULATION_HORIZON_MINUTES", 1440),
        sample_interval_minutes=_read_int("SIMULATION_SAMPLE_INTERVAL_MINUTES", 5),
        peak_window_minutes=_read_int("SIMULATION_PEAK_WINDOW_MINUTES", 180),
        default_queue_timeout_minutes=_read_int(
            "SIMULATION_DEFAULT_QUEUE_TIMEOUT_MINUTES", 30
        ),
        max_sources=_read_int("SIMULATION_MAX_SOURCES", 16),
    )
    if settings.horizon_minutes <= 0:
        raise ValueError("SIMULATION_HORIZON_MINUTES must be > 0")
    if settings.sample_interval_minutes <= 0:
        raise ValueError("SIMULATION_SAMPLE_INTERVAL_MINUTES must be > 0")
    if not 0 < settings.peak_window_minutes <= settings.horizon_minutes:
        raise ValueError("SIMULATION_PEAK_WINDOW_MINUTES must be in (0, horizon]")
    if settings.default_queue_timeout_minutes < 0:
        raise ValueError("SIMULATION_DEFAULT_QUEUE_TIMEOUT_MINUTES must be >= 0")
    if settings.max_sources <= 0:
        raise ValueError("SIMULATION_MAX_SOURCES must be > 0")
    return settings
