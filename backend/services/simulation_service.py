"""Minute-by-minute admission, queueing, and shedding simulation.

One run steps a fixed horizon. Each minute expires queued demand older than the
timeout, admits the minute's new demand into per-source queues, then spends
capacity on priority groups from most to least important. Inside a group the
oldest arrival cohort is served first and a cohort that cannot be served in
full splits the remaining capacity in proportion to each item's remaining
demand. Whatever is still queued after the last minute is shed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from itertools import groupby
from operator import attrgetter
from typing import Any, Optional, Sequence
from uuid import uuid4

import numpy as np

from backend.domain.constraints import validate_simulation_config
from backend.domain.models import (
    DemandSource,
    MinutePoint,
    QueueItem,
    SimulationConfig,
    SourceMetrics,
    UtilizationMetrics,
)
from backend.services.distribution_service import generate_demand_trace
from backend.services.metrics_service import compute_metrics
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class SimulationValidationError(Exception):
    """Raised when a simulation configuration is rejected before running."""


@dataclass(frozen=True)
class PriorityGroup:
    priority: int
    source_indices: tuple[int, ...]


@dataclass(frozen=True)
class EngineRun:
    trace: list[MinutePoint]
    served_by_source: dict[str, float]
    shed_by_source: dict[str, float]
    drained_by_source: dict[str, float]


class SimulationState:
    """Mutable state owned by a single engine run."""

    def __init__(self, source_count: int) -> None:
        self.queues: list[list[QueueItem]] = [[] for _ in range(source_count)]
        self.served_totals = [0.0] * source_count
        self.shed_totals = [0.0] * source_count
        self.trace: list[MinutePoint] = []

    def queued_total(self) -> float:
        return float(sum(item.remaining for queue in self.queues for item in queue))


def build_priority_groups(sources: Sequence[DemandSource]) -> list[PriorityGroup]:
    """Group source indices by priority, most important (lowest value) first."""
    members: dict[int, list[int]] = {}
    for index, source in enumerate(sources):
        members.setdefault(source.priority, []).append(index)
    return [
        PriorityGroup(priority=priority, source_indices=tuple(members[priority]))
        for priority in sorted(members)
    ]


def _expire_timed_out(state: SimulationState, minute: int, queue_timeout: int) -> float:
    shed_this_minute = 0.0
    for index, queue in enumerate(state.queues):
        kept: list[QueueItem] = []
        for item in queue:
            if minute - item.arrival_minute > queue_timeout:
                state.shed_totals[index] += item.remaining
                shed_this_minute += item.remaining
            else:
                kept.append(item)
        state.queues[index] = kept
    return shed_this_minute


def _admit_new_demand(
    state: SimulationState,
    demand_traces: Sequence[np.ndarray],
    minute: int,
) -> None:
    # Appending keeps every queue ordered by arrival minute.
    for index, trace in enumerate(demand_traces):
        value = float(trace[minute])
        if value > 0:
            state.queues[index].append(
                QueueItem(arrival_minute=minute, remaining=value, source_index=index)
            )


def _serve_group(
    state: SimulationState,
    group: PriorityGroup,
    available: float,
    served: list[float],
) -> float:
    candidates = [item for index in group.source_indices for item in state.queues[index]]
    candidates.sort(key=attrgetter("arrival_minute"))

    for _, cohort_items in groupby(candidates, key=attrgetter("arrival_minute")):
        if available <= 0:
            break
        cohort = list(cohort_items)
        cohort_total = sum(item.remaining for item in cohort)
        if cohort_total <= available:
            for item in cohort:
                served[item.source_index] += item.remaining
                item.remaining = 0.0
            available -= cohort_total
            continue

        budget = available
        for item in cohort:
            share = min(available * item.remaining / cohort_total, item.remaining, budget)
            served[item.source_index] += share
            item.remaining -= share
            budget -= share
        available = 0.0

    for index in group.source_indices:
        state.queues[index] = [item for item in state.queues[index] if item.remaining > 0]
    return available


def _allocate_capacity(
    state: SimulationState,
    groups: Sequence[PriorityGroup],
    capacity: float,
) -> list[float]:
    served = [0.0] * len(state.queues)
    available = float(capacity)
    for group in groups:
        if available <= 0:
            break
        available = _serve_group(state, group, available, served)
    return served


def _drain_queues(state: SimulationState) -> list[float]:
    drained = [0.0] * len(state.queues)
    for index, queue in enumerate(state.queues):
        drained[index] = float(sum(item.remaining for item in queue))
        state.shed_totals[index] += drained[index]
        state.queues[index] = []
    return drained


def run_engine(
    config: SimulationConfig,
    demand_traces: Optional[Sequence[np.ndarray]] = None,
) -> EngineRun:
    """Step the whole horizon for an already validated configuration."""
    sources = config.sources
    source_ids = [source.source_id for source in sources]
    if not sources:
        return EngineRun(trace=[], served_by_source={}, shed_by_source={}, drained_by_source={})

    if demand_traces is None:
        demand_traces = [
            generate_demand_trace(source, config.horizon_minutes) for source in sources
        ]
    if len(demand_traces) != len(sources):
        raise ValueError("expected one demand trace per source")

    groups = build_priority_groups(sources)
    state = SimulationState(len(sources))

    for minute in range(config.horizon_minutes):
        shed_this_minute = _expire_timed_out(state, minute, config.queue_timeout)
        _admit_new_demand(state, demand_traces, minute)
        served = _allocate_capacity(state, groups, config.capacity)

        for index, amount in enumerate(served):
            state.served_totals[index] += amount
        demand_by_source = {
            source_id: float(demand_traces[index][minute])
            for index, source_id in enumerate(source_ids)
        }
        state.trace.append(
            MinutePoint(
                minute=minute,
                input_demand=float(sum(demand_by_source.values())),
                served=float(sum(served)),
                queued=state.queued_total(),
                shed=shed_this_minute,
                capacity=float(config.capacity),
                demand_by_source=demand_by_source,
                served_by_source=dict(zip(source_ids, served)),
            )
        )

    drained = _drain_queues(state)
    return EngineRun(
        trace=state.trace,
        served_by_source=dict(zip(source_ids, state.served_totals)),
        shed_by_source=dict(zip(source_ids, state.shed_totals)),
        drained_by_source=dict(zip(source_ids, drained)),
    )


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


def utilization_metrics_to_dict(metrics: UtilizationMetrics) -> dict[str, float | None]:
    return {
        "total_utilization": metrics.total_served,
        "peak_utilization": metrics.peak_utilization,
        "avg_utilization": metrics.avg_utilization,
        "peak_percent": _finite_or_none(metrics.peak_percent),
        "avg_percent": _finite_or_none(metrics.avg_percent),
        "shed_demand": metrics.total_shed,
        "shed_percent": _finite_or_none(metrics.shed_percent),
    }


def source_metrics_to_dict(metrics: SourceMetrics) -> dict[str, float | None]:
    return {
        "total_utilization": metrics.total_served,
        "peak_utilization": metrics.peak_utilization,
        "avg_utilization": metrics.avg_utilization,
        "shed_demand": metrics.total_shed,
        "shed_percent": _finite_or_none(metrics.shed_percent),
    }


def minute_point_to_dict(point: MinutePoint) -> dict[str, Any]:
    return {
        "minute": point.minute,
        "time": point.time_label,
        "hour": point.hour,
        "input_demand": point.input_demand,
        "actual_utilization": point.served,
        "capacity": point.capacity,
        "queued_demand": point.queued,
        "shed_demand": point.shed,
        "demand_by_source": dict(point.demand_by_source),
    }


@dataclass(frozen=True)
class SimulationResult:
    config: SimulationConfig
    trace: list[MinutePoint]
    metrics: UtilizationMetrics
    metrics_by_source: dict[str, SourceMetrics]

    @property
    def points(self) -> list[MinutePoint]:
        """Trace sampled every ``sample_interval_minutes`` for display."""
        interval = self.config.sample_interval_minutes
        return [point for point in self.trace if point.minute % interval == 0]

    def to_api_dict(self) -> dict[str, Any]:
        metrics = utilization_metrics_to_dict(self.metrics)
        metrics["by_source"] = {
            source_id: source_metrics_to_dict(source_metrics)
            for source_id, source_metrics in self.metrics_by_source.items()
        }
        return {
            "data": [minute_point_to_dict(point) for point in self.points],
            "metrics": metrics,
        }


def compare_metrics(
    baseline: UtilizationMetrics,
    scenario: UtilizationMetrics,
) -> dict[str, float | None]:
    return {
        "served_change": scenario.total_served - baseline.total_served,
        "shed_change": scenario.total_shed - baseline.total_shed,
        "shed_percent_change": _finite_or_none(scenario.shed_percent - baseline.shed_percent),
        "peak_utilization_change": scenario.peak_utilization - baseline.peak_utilization,
        "avg_utilization_change": scenario.avg_utilization - baseline.avg_utilization,
    }


class SimulationService:
    """Validates configurations, runs the engine, and aggregates metrics.

    The service holds no per-run state, so one instance can serve concurrent
    requests; every run builds its own ``SimulationState``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def build_config(
        self,
        *,
        capacity: float,
        sources: Sequence[DemandSource],
        queue_timeout: Optional[int] = None,
    ) -> SimulationConfig:
        return SimulationConfig(
            capacity=capacity,
            sources=tuple(sources),
            queue_timeout=(
                queue_timeout
                if queue_timeout is not None
                else self._settings.default_queue_timeout_minutes
            ),
            horizon_minutes=self._settings.horizon_minutes,
            sample_interval_minutes=self._settings.sample_interval_minutes,
            peak_window_minutes=self._settings.peak_window_minutes,
        )

    def validate(self, config: SimulationConfig) -> None:
        try:
            validate_simulation_config(config, max_sources=self._settings.max_sources)
        except ValueError as exc:
            logger.warning("Simulation config rejected | reason=%s", exc)
            raise SimulationValidationError(str(exc)) from exc

    def run(self, config: SimulationConfig) -> SimulationResult:
        self.validate(config)
        run_id = str(uuid4())
        logger.info(
            (
                "Simulation run started | run_id=%s | capacity=%s | sources=%s | "
                "queue_timeout=%s | horizon=%s"
            ),
            run_id,
            config.capacity,
            len(config.sources),
            config.queue_timeout,
            config.horizon_minutes,
        )

        engine_run = run_engine(config)
        metrics, metrics_by_source = compute_metrics(
            engine_run.trace,
            config,
            engine_run.served_by_source,
            engine_run.shed_by_source,
        )

        logger.info(
            (
                "Simulation run completed | run_id=%s | served=%.3f | shed=%.3f | "
                "drained_at_close=%.3f | peak_utilization=%.3f"
            ),
            run_id,
            metrics.total_served,
            metrics.total_shed,
            sum(engine_run.drained_by_source.values()),
            metrics.peak_utilization,
        )
        return SimulationResult(
            config=config,
            trace=engine_run.trace,
            metrics=metrics,
            metrics_by_source=metrics_by_source,
        )

    def compare(
        self,
        baseline: SimulationConfig,
        scenario: SimulationConfig,
    ) -> dict[str, dict[str, float | None]]:
        """Run two independent configurations and report scenario minus baseline."""
        baseline_result = self.run(baseline)
        scenario_result = self.run(scenario)
        return {
            "baseline": utilization_metrics_to_dict(baseline_result.metrics),
            "scenario": utilization_metrics_to_dict(scenario_result.metrics),
            "delta": compare_metrics(baseline_result.metrics, scenario_result.metrics),
        }
