"""Domain models for demand generation, queueing, and utilization metrics."""

from __future__ import annotations

from dataclasses import dataclass, field


GAUSSIAN = "gaussian"
LINEAR = "linear"
SUPPORTED_SHAPES = (GAUSSIAN, LINEAR)

HORIZON_MINUTES = 1440
SAMPLE_INTERVAL_MINUTES = 5
PEAK_WINDOW_MINUTES = 180


@dataclass(frozen=True)
class DemandSource:
    """One named demand stream.

    ``peak_hour`` and ``spread_hours`` only apply to gaussian sources; a linear
    source spreads ``total_demand`` evenly across the horizon.
    """

    source_id: str
    shape: str
    total_demand: float
    priority: int
    peak_hour: float | None = None
    spread_hours: float | None = None


@dataclass(frozen=True)
class SimulationConfig:
    capacity: float
    sources: tuple[DemandSource, ...]
    queue_timeout: int
    horizon_minutes: int = HORIZON_MINUTES
    sample_interval_minutes: int = SAMPLE_INTERVAL_MINUTES
    peak_window_minutes: int = PEAK_WINDOW_MINUTES

    @property
    def total_demand(self) -> float:
        return float(sum(source.total_demand for source in self.sources))


@dataclass
class QueueItem:
    """Unserved demand from one source, aged from its first arrival minute."""

    arrival_minute: int
    remaining: float
    source_index: int


@dataclass(frozen=True)
class MinutePoint:
    minute: int
    input_demand: float
    served: float
    queued: float
    shed: float
    capacity: float
    demand_by_source: dict[str, float] = field(default_factory=dict)
    served_by_source: dict[str, float] = field(default_factory=dict)

    @property
    def hour(self) -> float:
        return self.minute / 60

    @property
    def time_label(self) -> str:
        return f"{self.minute // 60:02d}:{self.minute % 60:02d}"


@dataclass(frozen=True)
class UtilizationMetrics:
    """Aggregate utilization and shedding over a full run.

    Percent fields are ``nan`` when their denominator is zero.
    """

    total_served: float
    peak_utilization: float
    avg_utilization: float
    peak_percent: float
    avg_percent: float
    total_shed: float
    shed_percent: float


@dataclass(frozen=True)
class SourceMetrics:
    source_id: str
    total_served: float
    peak_utilization: float
    avg_utilization: float
    total_shed: float
    shed_percent: float
