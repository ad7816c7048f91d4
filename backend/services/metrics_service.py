"""Reduce a per-minute simulation trace into utilization and shedding metrics."""

from __future__ import annotations

import math
from typing import Mapping, Sequence

import numpy as np

from backend.domain.models import MinutePoint, SimulationConfig, SourceMetrics, UtilizationMetrics


def percent_of(value: float, reference: float) -> float:
    """Return ``value / reference`` in percent, or ``nan`` for a zero reference."""
    if reference <= 0:
        return math.nan
    return float(value / reference * 100.0)


def peak_utilization(served_values: Sequence[float] | np.ndarray, window: int) -> float:
    """Mean of the ``window`` busiest minutes.

    Always divides by ``window`` so a short trace reports a diluted peak.
    """
    values = np.asarray(served_values, dtype=float)
    if values.size == 0:
        return 0.0
    busiest = np.sort(values, kind="stable")[::-1][:window]
    return float(busiest.sum() / window)


def compute_metrics(
    trace: Sequence[MinutePoint],
    config: SimulationConfig,
    served_by_source: Mapping[str, float],
    shed_by_source: Mapping[str, float],
) -> tuple[UtilizationMetrics, dict[str, SourceMetrics]]:
    horizon = config.horizon_minutes
    window = config.peak_window_minutes

    served_values = np.array([point.served for point in trace], dtype=float)
    total_served = float(served_values.sum()) if served_values.size else 0.0
    total_shed = float(sum(shed_by_source.values()))
    peak = peak_utilization(served_values, window)
    average = total_served / horizon

    aggregate = UtilizationMetrics(
        total_served=total_served,
        peak_utilization=peak,
        avg_utilization=average,
        peak_percent=percent_of(peak, config.capacity),
        avg_percent=percent_of(average, config.capacity),
        total_shed=total_shed,
        shed_percent=percent_of(total_shed, config.total_demand),
    )

    by_source: dict[str, SourceMetrics] = {}
    for source in config.sources:
        source_served = float(served_by_source.get(source.source_id, 0.0))
        source_shed = float(shed_by_source.get(source.source_id, 0.0))
        source_values = [point.served_by_source.get(source.source_id, 0.0) for point in trace]
        by_source[source.source_id] = SourceMetrics(
            source_id=source.source_id,
            total_served=source_served,
            peak_utilization=peak_utilization(source_values, window),
            avg_utilization=source_served / horizon,
            total_shed=source_shed,
            shed_percent=percent_of(source_shed, source.total_demand),
        )
    return aggregate, by_source
