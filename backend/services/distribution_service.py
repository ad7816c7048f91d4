"""Per-minute demand curves for gaussian and linear sources."""

from __future__ import annotations

import math

import numpy as np

from backend.domain.models import GAUSSIAN, HORIZON_MINUTES, LINEAR, DemandSource


def gaussian_kernel(x: np.ndarray, mean: float, std_dev: float) -> np.ndarray:
    """Unnormalized bell curve, 1.0 at ``mean``."""
    if std_dev <= 0:
        raise ValueError("std_dev must be > 0")
    return np.exp(-0.5 * ((x - mean) / std_dev) ** 2)


def generate_gaussian_demand(
    total_demand: float,
    peak_hour: float,
    spread_hours: float,
    horizon_minutes: int = HORIZON_MINUTES,
) -> np.ndarray:
    """Sample a gaussian around ``peak_hour`` once per minute.

    The scale uses the continuous integral ``std_dev * sqrt(2*pi)`` rather than
    the discrete sum, so the trace total is only approximately ``total_demand``.
    Mass that falls outside the horizon is lost.
    """
    std_dev_minutes = spread_hours * 60.0
    if std_dev_minutes <= 0:
        raise ValueError("spread_hours must be > 0")
    peak_minute = peak_hour * 60.0
    scale_factor = total_demand / (std_dev_minutes * math.sqrt(2.0 * math.pi))
    minutes = np.arange(horizon_minutes, dtype=float)
    return scale_factor * gaussian_kernel(minutes, peak_minute, std_dev_minutes)


def generate_linear_demand(
    total_demand: float,
    horizon_minutes: int = HORIZON_MINUTES,
) -> np.ndarray:
    return np.full(horizon_minutes, total_demand / horizon_minutes, dtype=float)


def generate_demand_trace(
    source: DemandSource,
    horizon_minutes: int = HORIZON_MINUTES,
) -> np.ndarray:
    if source.shape == LINEAR:
        trace = generate_linear_demand(source.total_demand, horizon_minutes)
    elif source.shape == GAUSSIAN:
        if source.peak_hour is None or source.spread_hours is None:
            raise ValueError(
                f"gaussian source '{source.source_id}' requires peak_hour and spread_hours"
            )
        trace = generate_gaussian_demand(
            source.total_demand,
            source.peak_hour,
            source.spread_hours,
            horizon_minutes,
        )
    else:
        raise ValueError(f"unsupported demand shape '{source.shape}'")
    trace.setflags(write=False)
    return trace
