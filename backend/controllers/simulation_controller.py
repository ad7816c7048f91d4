"""HTTP controller layer for demand/capacity simulation runs."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import get_simulation_service
from backend.domain.models import DemandSource, SimulationConfig
from backend.services.simulation_service import SimulationService, SimulationValidationError
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["simulation"])


class DemandSourceRequest(BaseModel):
    """Input DTO for one demand curve."""

    id: str = Field(min_length=1)
    type: Literal["gaussian", "linear"]
    total_demand: float = Field(ge=0.0)
    priority: int = Field(ge=1)
    peak_hour: float | None = Field(default=None, ge=0.0, lt=24.0)
    curve_width: float | None = Field(default=None, gt=0.0)

    def to_domain(self) -> DemandSource:
        return DemandSource(
            source_id=self.id,
            shape=self.type,
            total_demand=self.total_demand,
            priority=self.priority,
            peak_hour=self.peak_hour,
            spread_hours=self.curve_width,
        )


class SimulateRequest(BaseModel):
    capacity: float = Field(ge=0.0)
    queue_timeout: int | None = Field(default=None, ge=0)
    sources: list[DemandSourceRequest] = Field(default_factory=list)

    @field_validator("sources")
    @classmethod
    def validate_unique_source_ids(
        cls,
        value: list[DemandSourceRequest],
    ) -> list[DemandSourceRequest]:
        source_ids = [source.id for source in value]
        if len(source_ids) != len(set(source_ids)):
            raise ValueError("source ids must be unique")
        return value


class MinutePointResponse(BaseModel):
    minute: int = Field(ge=0)
    time: str
    hour: float = Field(ge=0.0)
    input_demand: float = Field(ge=0.0)
    actual_utilization: float = Field(ge=0.0)
    capacity: float = Field(ge=0.0)
    queued_demand: float = Field(ge=0.0)
    shed_demand: float = Field(ge=0.0)
    demand_by_source: dict[str, float]


class SourceMetricsResponse(BaseModel):
    total_utilization: float = Field(ge=0.0)
    peak_utilization: float = Field(ge=0.0)
    avg_utilization: float = Field(ge=0.0)
    shed_demand: float = Field(ge=0.0)
    shed_percent: float | None = None


class MetricsResponse(BaseModel):
    total_utilization: float = Field(ge=0.0)
    peak_utilization: float = Field(ge=0.0)
    avg_utilization: float = Field(ge=0.0)
    peak_percent: float | None = None
    avg_percent: float | None = None
    shed_demand: float = Field(ge=0.0)
    shed_percent: float | None = None


class SimulationMetricsResponse(MetricsResponse):
    by_source: dict[str, SourceMetricsResponse]


class SimulateResponse(BaseModel):
    data: list[MinutePointResponse]
    metrics: SimulationMetricsResponse


class CompareRequest(BaseModel):
    baseline: SimulateRequest
    scenario: SimulateRequest


class ComparisonDeltaResponse(BaseModel):
    served_change: float
    shed_change: float
    shed_percent_change: float | None = None
    peak_utilization_change: float
    avg_utilization_change: float


class CompareResponse(BaseModel):
    baseline: MetricsResponse
    scenario: MetricsResponse
    delta: ComparisonDeltaResponse


class HealthResponse(BaseModel):
    app_name: str
    app_version: str
    horizon_minutes: int


def _to_config(service: SimulationService, payload: SimulateRequest) -> SimulationConfig:
    return service.build_config(
        capacity=payload.capacity,
        sources=[source.to_domain() for source in payload.sources],
        queue_timeout=payload.queue_timeout,
    )


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health(request: Request) -> HealthResponse:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return HealthResponse(
        app_name=settings.app_name,
        app_version=settings.app_version,
        horizon_minutes=settings.horizon_minutes,
    )


@router.post(
    "/simulate",
    response_model=SimulateResponse,
    status_code=status.HTTP_200_OK,
)
def simulate(
    payload: SimulateRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> SimulateResponse:
    """Run one full-horizon simulation and return sampled points plus metrics."""
    try:
        result = service.run(_to_config(service, payload))
        return SimulateResponse(**result.to_api_dict())
    except SimulationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected simulation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run simulation",
        ) from exc


@router.post(
    "/compare",
    response_model=CompareResponse,
    status_code=status.HTTP_200_OK,
)
def compare(
    payload: CompareRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> CompareResponse:
    """Run a baseline and a what-if configuration side by side."""
    try:
        result = service.compare(
            _to_config(service, payload.baseline),
            _to_config(service, payload.scenario),
        )
        return CompareResponse(**result)
    except SimulationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected comparison failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compare simulations",
        ) from exc
