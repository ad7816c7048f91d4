from __future__ import annotations

import math
from dataclasses import replace

import numpy as np
import pytest

from backend.domain.models import GAUSSIAN, LINEAR, DemandSource, SimulationConfig
from backend.services.simulation_service import (
    SimulationService,
    SimulationValidationError,
    build_priority_groups,
    run_engine,
)
from backend.utils.config import get_settings


def _build_test_settings(**overrides):
    get_settings.cache_clear()
    return replace(get_settings(), **overrides)


def _service() -> SimulationService:
    return SimulationService(settings=_build_test_settings())


def _gaussian(source_id: str, total: float, peak: float, spread: float, priority: int = 1):
    return DemandSource(source_id, GAUSSIAN, total, priority, peak_hour=peak, spread_hours=spread)


def _small_config(sources, capacity: float, queue_timeout: int, horizon: int = 10):
    return SimulationConfig(
        capacity=capacity,
        sources=tuple(sources),
        queue_timeout=queue_timeout,
        horizon_minutes=horizon,
        sample_interval_minutes=1,
        peak_window_minutes=horizon,
    )


def _trace(*values: float, horizon: int = 10) -> np.ndarray:
    padded = np.zeros(horizon, dtype=float)
    padded[: len(values)] = values
    return padded


# --- Conservation ---

def test_single_gaussian_source_conserves_demand():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[_gaussian("curve-1", 100000.0, 15.0, 3.0)],
        queue_timeout=30,
    )

    result = service.run(config)

    total = result.metrics.total_served + result.metrics.total_shed
    assert total == pytest.approx(100000.0, rel=0.002)


def test_multi_source_demand_is_conserved_per_source():
    service = _service()
    config = service.build_config(
        capacity=80,
        sources=[
            DemandSource("curve-1", LINEAR, 50000.0, priority=1),
            _gaussian("curve-2", 75000.0, 12.0, 2.0, priority=2),
        ],
        queue_timeout=60,
    )

    result = service.run(config)

    linear = result.metrics_by_source["curve-1"]
    gaussian = result.metrics_by_source["curve-2"]
    assert linear.total_served + linear.total_shed == pytest.approx(50000.0, rel=1e-9)
    assert gaussian.total_served + gaussian.total_shed == pytest.approx(75000.0, rel=0.002)
    total = result.metrics.total_served + result.metrics.total_shed
    assert total == pytest.approx(125000.0, rel=0.001)


# --- Capacity extremes ---

def test_zero_capacity_sheds_everything():
    service = _service()
    config = service.build_config(
        capacity=0,
        sources=[DemandSource("curve-1", LINEAR, 100000.0, priority=1)],
        queue_timeout=30,
    )

    result = service.run(config)

    assert result.metrics.total_served == 0.0
    assert result.metrics.total_shed == pytest.approx(100000.0, rel=1e-9)
    assert result.metrics_by_source["curve-1"].shed_percent == pytest.approx(100.0)
    assert math.isnan(result.metrics.peak_percent)
    assert math.isnan(result.metrics.avg_percent)


def test_unbounded_capacity_sheds_nothing():
    service = _service()
    config = service.build_config(
        capacity=10000,
        sources=[_gaussian("curve-1", 50000.0, 15.0, 3.0)],
        queue_timeout=30,
    )

    result = service.run(config)

    assert result.metrics.total_shed == 0.0
    assert result.metrics.total_served == pytest.approx(50000.0, rel=0.002)
    assert all(point.queued == 0.0 for point in result.trace)


# --- Priority and fairness ---

def test_higher_priority_source_takes_capacity_first():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[
            DemandSource("p1", LINEAR, 216000.0, priority=1),
            DemandSource("p2", LINEAR, 144000.0, priority=2),
        ],
        queue_timeout=30,
    )

    result = service.run(config)

    p1 = result.metrics_by_source["p1"]
    p2 = result.metrics_by_source["p2"]
    assert p1.total_served == pytest.approx(144000.0, rel=1e-9)
    assert p1.total_shed == pytest.approx(72000.0, rel=1e-9)
    assert p2.total_served == 0.0
    assert p2.total_shed == pytest.approx(144000.0, rel=1e-9)


def test_high_priority_source_with_enough_capacity_is_fully_served():
    service = _service()
    config = service.build_config(
        capacity=120,
        sources=[
            DemandSource("critical", LINEAR, 72000.0, priority=1),
            DemandSource("bulk", LINEAR, 144000.0, priority=2),
        ],
        queue_timeout=10,
    )

    result = service.run(config)

    critical = result.metrics_by_source["critical"]
    bulk = result.metrics_by_source["bulk"]
    assert critical.total_served == pytest.approx(72000.0, rel=1e-9)
    assert critical.total_shed == 0.0
    assert bulk.total_served == pytest.approx(1440 * 70.0, rel=1e-9)
    assert bulk.total_shed == pytest.approx(144000.0 - 1440 * 70.0, rel=1e-9)


def test_identical_sources_at_same_priority_share_equally():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[
            _gaussian("curve-1", 50000.0, 15.0, 3.0),
            _gaussian("curve-2", 50000.0, 15.0, 3.0),
        ],
        queue_timeout=30,
    )

    result = service.run(config)

    first = result.metrics_by_source["curve-1"]
    second = result.metrics_by_source["curve-2"]
    assert first.total_shed > 0
    assert first.total_shed == pytest.approx(second.total_shed, rel=0.01)
    assert first.total_served == pytest.approx(second.total_served, rel=0.01)


def test_same_minute_cohort_is_split_in_proportion_to_demand():
    sources = [
        DemandSource("a", LINEAR, 0.0, priority=1),
        DemandSource("b", LINEAR, 0.0, priority=1),
    ]
    config = _small_config(sources, capacity=4.0, queue_timeout=0)

    run = run_engine(config, demand_traces=[_trace(6.0), _trace(2.0)])

    assert run.trace[0].served_by_source == {"a": 3.0, "b": 1.0}
    assert run.trace[1].shed == pytest.approx(4.0)
    assert run.shed_by_source == {"a": pytest.approx(3.0), "b": pytest.approx(1.0)}


def test_priority_beats_arrival_age():
    sources = [
        DemandSource("hi", LINEAR, 0.0, priority=1),
        DemandSource("lo", LINEAR, 0.0, priority=2),
    ]
    config = _small_config(sources, capacity=4.0, queue_timeout=5)

    run = run_engine(config, demand_traces=[_trace(0.0, 4.0), _trace(8.0)])

    assert run.trace[0].served_by_source == {"hi": 0.0, "lo": 4.0}
    assert run.trace[1].served_by_source == {"hi": 4.0, "lo": 0.0}
    assert run.trace[2].served_by_source == {"hi": 0.0, "lo": 4.0}
    assert run.shed_by_source == {"hi": 0.0, "lo": 0.0}


def test_older_cohorts_are_served_first_within_a_group():
    sources = [DemandSource("a", LINEAR, 0.0, priority=1)]
    config = _small_config(sources, capacity=4.0, queue_timeout=5)

    run = run_engine(config, demand_traces=[_trace(5.0, 5.0)])

    assert [point.served for point in run.trace[:4]] == [4.0, 4.0, 2.0, 0.0]
    assert run.trace[1].queued == pytest.approx(2.0)
    assert run.served_by_source["a"] == pytest.approx(10.0)


# --- Timeout and horizon end ---

@pytest.mark.parametrize(
    ("queue_timeout", "expected_served", "expected_shed"),
    [(2, 10.0, 0.0), (1, 8.0, 2.0), (0, 4.0, 6.0)],
)
def test_partial_service_does_not_reset_item_age(queue_timeout, expected_served, expected_shed):
    sources = [DemandSource("a", LINEAR, 0.0, priority=1)]
    config = _small_config(sources, capacity=4.0, queue_timeout=queue_timeout)

    run = run_engine(config, demand_traces=[_trace(10.0)])

    assert run.served_by_source["a"] == pytest.approx(expected_served)
    assert run.shed_by_source["a"] == pytest.approx(expected_shed)


def test_zero_timeout_sheds_leftover_on_next_minute():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[DemandSource("p1", LINEAR, 216000.0, priority=1)],
        queue_timeout=0,
    )

    result = service.run(config)

    assert result.trace[0].shed == 0.0
    assert result.trace[1].shed == pytest.approx(50.0)
    assert result.metrics.total_shed == pytest.approx(72000.0)


def test_remaining_queue_is_drained_at_horizon_end():
    sources = [DemandSource("a", LINEAR, 0.0, priority=1)]
    config = _small_config(sources, capacity=1.0, queue_timeout=100)

    run = run_engine(config, demand_traces=[_trace(0, 0, 0, 0, 0, 0, 0, 0, 0, 5.0)])

    assert run.trace[-1].queued == pytest.approx(4.0)
    assert run.drained_by_source == {"a": pytest.approx(4.0)}
    assert run.shed_by_source == {"a": pytest.approx(4.0)}
    assert sum(point.shed for point in run.trace) == 0.0


def test_increasing_timeout_never_increases_shed():
    service = _service()
    sources = [
        _gaussian("web", 200000.0, 14.0, 2.5, priority=1),
        _gaussian("api", 80000.0, 10.0, 4.0, priority=2),
    ]

    previous_shed = math.inf
    for queue_timeout in [0, 5, 30, 120, 600]:
        config = service.build_config(capacity=120, sources=sources, queue_timeout=queue_timeout)
        shed = service.run(config).metrics.total_shed
        assert shed <= previous_shed + 1e-6
        previous_shed = shed


# --- Numeric safety ---

def test_served_never_exceeds_capacity_and_queues_stay_non_negative():
    service = _service()
    config = service.build_config(
        capacity=37.5,
        sources=[
            _gaussian("a", 60000.0, 9.0, 2.0, priority=1),
            _gaussian("b", 45000.0, 9.0, 2.0, priority=1),
            DemandSource("c", LINEAR, 20000.0, priority=2),
        ],
        queue_timeout=15,
    )

    result = service.run(config)

    for point in result.trace:
        assert point.served <= 37.5 + 1e-9
        assert point.queued >= 0.0
        assert all(value >= 0.0 for value in point.served_by_source.values())


# --- Degenerate inputs ---

def test_zero_sources_produce_empty_trace():
    service = _service()

    result = service.run(service.build_config(capacity=100, sources=[], queue_timeout=30))

    assert result.trace == []
    assert result.points == []
    assert result.metrics.total_served == 0.0
    assert result.metrics.total_shed == 0.0
    assert math.isnan(result.metrics.shed_percent)
    assert result.metrics_by_source == {}


def test_zero_volume_source_reports_nan_shed_percent():
    service = _service()
    config = service.build_config(
        capacity=10,
        sources=[
            DemandSource("idle", LINEAR, 0.0, priority=1),
            DemandSource("busy", LINEAR, 1440.0, priority=1),
        ],
        queue_timeout=5,
    )

    result = service.run(config)

    assert math.isnan(result.metrics_by_source["idle"].shed_percent)
    assert result.metrics_by_source["busy"].shed_percent == 0.0


# --- Output shape ---

def test_points_are_sampled_every_five_minutes():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[_gaussian("curve-1", 100000.0, 15.0, 3.0)],
        queue_timeout=30,
    )

    result = service.run(config)

    assert len(result.trace) == 1440
    assert len(result.points) == 288
    assert result.points[1].time_label == "00:05"
    assert result.points[-1].time_label == "23:55"
    assert set(result.points[0].demand_by_source) == {"curve-1"}


def test_build_priority_groups_orders_by_priority_value():
    sources = [
        DemandSource("c", LINEAR, 1.0, priority=3),
        DemandSource("a", LINEAR, 1.0, priority=1),
        DemandSource("b", LINEAR, 1.0, priority=3),
    ]

    groups = build_priority_groups(sources)

    assert [(group.priority, group.source_indices) for group in groups] == [
        (1, (1,)),
        (3, (0, 2)),
    ]


# --- Service ---

def test_service_rejects_invalid_configuration():
    service = _service()
    config = service.build_config(
        capacity=-1,
        sources=[DemandSource("curve-1", LINEAR, 100.0, priority=1)],
        queue_timeout=30,
    )

    with pytest.raises(SimulationValidationError, match="capacity"):
        service.run(config)


def test_service_rejects_more_sources_than_configured():
    service = SimulationService(settings=_build_test_settings(max_sources=1))
    config = service.build_config(
        capacity=10,
        sources=[
            DemandSource("a", LINEAR, 100.0, priority=1),
            DemandSource("b", LINEAR, 100.0, priority=1),
        ],
    )

    with pytest.raises(SimulationValidationError):
        service.run(config)


def test_build_config_uses_settings_defaults():
    settings = _build_test_settings(default_queue_timeout_minutes=45, sample_interval_minutes=10)
    service = SimulationService(settings=settings)

    config = service.build_config(capacity=50, sources=[])

    assert config.queue_timeout == 45
    assert config.sample_interval_minutes == 10
    assert config.horizon_minutes == settings.horizon_minutes


def test_simulation_is_deterministic_for_same_inputs():
    service = _service()
    config = service.build_config(
        capacity=90,
        sources=[
            _gaussian("a", 70000.0, 13.0, 2.0, priority=1),
            _gaussian("b", 40000.0, 13.0, 2.0, priority=1),
        ],
        queue_timeout=20,
    )

    first = service.run(config)
    second = service.run(config)

    assert first.to_api_dict() == second.to_api_dict()


def test_compare_reports_scenario_minus_baseline():
    service = _service()
    sources = [_gaussian("web", 100000.0, 15.0, 3.0)]
    baseline = service.build_config(capacity=100, sources=sources, queue_timeout=30)
    scenario = service.build_config(capacity=200, sources=sources, queue_timeout=30)

    result = service.compare(baseline, scenario)

    delta = result["delta"]
    assert delta["served_change"] == pytest.approx(
        result["scenario"]["total_utilization"] - result["baseline"]["total_utilization"]
    )
    assert delta["served_change"] > 0
    assert delta["shed_change"] < 0


def test_compare_identical_configs_has_zero_delta():
    service = _service()
    config = service.build_config(
        capacity=100,
        sources=[DemandSource("flat", LINEAR, 200000.0, priority=1)],
        queue_timeout=30,
    )

    result = service.compare(config, config)

    assert result["delta"] == {
        "served_change": 0.0,
        "shed_change": 0.0,
        "shed_percent_change": 0.0,
        "peak_utilization_change": 0.0,
        "avg_utilization_change": 0.0,
    }
