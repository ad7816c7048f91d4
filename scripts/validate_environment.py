#!/usr/bin/env python3
"""Validate local simulator environment readiness."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import GAUSSIAN, LINEAR, DemandSource
from backend.services.distribution_service import generate_gaussian_demand
from backend.services.simulation_service import SimulationService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_names = ["fastapi", "uvicorn", "pydantic", "numpy", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_names:
        try:
            importlib.import_module(module_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 3: Settings load
    try:
        settings = get_settings()
        ok, line = _print_result(
            "Settings",
            True,
            f": horizon={settings.horizon_minutes} sample={settings.sample_interval_minutes}",
        )
    except Exception as exc:
        ok, line = _print_result("Settings", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 4: Gaussian curve integrates to its volume within 0.2%
    try:
        total = float(generate_gaussian_demand(100000.0, 15.0, 3.0).sum())
        if abs(total - 100000.0) > 200.0:
            raise RuntimeError(f"expected 100000 +/- 200, got {total:.2f}")
        ok, line = _print_result("Gaussian demand integration", True, f": {total:.2f}")
    except Exception as exc:
        ok, line = _print_result("Gaussian demand integration", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 5: Reference priority scenario
    try:
        service = SimulationService()
        config = service.build_config(
            capacity=100,
            sources=[
                DemandSource("p1", LINEAR, 216000.0, priority=1),
                DemandSource("p2", LINEAR, 144000.0, priority=2),
                DemandSource("g1", GAUSSIAN, 0.0, priority=3, peak_hour=12.0, spread_hours=2.0),
            ],
            queue_timeout=30,
        )
        result = service.run(config)
        p1 = result.metrics_by_source["p1"]
        p2 = result.metrics_by_source["p2"]
        if abs(p1.total_served - 144000.0) > 1.0 or p2.total_served != 0.0:
            raise RuntimeError(
                f"unexpected served totals p1={p1.total_served:.2f} p2={p2.total_served:.2f}"
            )
        ok, line = _print_result(
            "Priority scenario",
            True,
            f": p1 shed={p1.total_shed:.0f} p2 shed={p2.total_shed:.0f}",
        )
    except Exception as exc:
        ok, line = _print_result("Priority scenario", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    print(SEPARATOR_LINE)
    print(" Simulator Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
