"""Domain-level validation rules for simulation configurations."""

from __future__ import annotations

import math

from backend.domain.models import GAUSSIAN, SUPPORTED_SHAPES, DemandSource, SimulationConfig


def _is_real(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_demand_source(source: DemandSource) -> None:
    if not isinstance(source.source_id, str) or not source.source_id.strip():
        raise ValueError("source_id must be a non-empty string")
    if source.shape not in SUPPORTED_SHAPES:
        raise ValueError(
            f"source '{source.source_id}' has unsupported shape '{source.shape}'"
        )
    if not _is_real(source.total_demand) or not math.isfinite(source.total_demand):
        raise ValueError(f"source '{source.source_id}' total_demand must be a finite number")
    if source.total_demand < 0:
        raise ValueError(f"source '{source.source_id}' total_demand must be >= 0")
    if not _is_integer(source.priority) or source.priority < 1:
        raise ValueError(f"source '{source.source_id}' priority must be a positive integer")

    if source.shape == GAUSSIAN:
        peak_hour = source.peak_hour
        if peak_hour is None or not _is_real(peak_hour) or not 0.0 <= peak_hour < 24.0:
            raise ValueError(f"source '{source.source_id}' peak_hour must be in [0, 24)")
        spread_hours = source.spread_hours
        if (
            spread_hours is None
            or not _is_real(spread_hours)
            or not math.isfinite(spread_hours)
            or spread_hours <= 0
        ):
            raise ValueError(f"source '{source.source_id}' spread_hours must be > 0")


def validate_simulation_config(config: SimulationConfig, max_sources: int | None = None) -> None:
    if not _is_real(config.capacity) or not math.isfinite(config.capacity):
        raise ValueError("capacity must be a finite number")
    if config.capacity < 0:
        raise ValueError("capacity must be >= 0")
    if not _is_integer(config.queue_timeout) or config.queue_timeout < 0:
        raise ValueError("queue_timeout must be a non-negative integer")
    if not _is_integer(config.horizon_minutes) or config.horizon_minutes <= 0:
        raise ValueError("horizon_minutes must be > 0")
    if not _is_integer(config.sample_interval_minutes) or config.sample_interval_minutes <= 0:
        raise ValueError("sample_interval_minutes must be > 0")
    if not _is_integer(config.peak_window_minutes) or not (
        0 < config.peak_window_minutes <= config.horizon_minutes
    ):
        raise ValueError("peak_window_minutes must be in (0, horizon_minutes]")
    if max_sources is not None and len(config.sources) > max_sources:
        raise ValueError(f"at most {max_sources} sources are supported")

    seen_ids: set[str] = set()
    for source in config.sources:
        validate_demand_source(source)
        if source.source_id in seen_ids:
            raise ValueError(f"duplicate source_id '{source.source_id}'")
        seen_ids.add(source.source_id)
