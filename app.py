"""
app.py: FastAPI application factory.

This is the ASGI application object imported by uvicorn.
It wires the simulation service and registers routers.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.controllers.simulation_controller import router as simulation_router
from backend.services.simulation_service import SimulationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    The simulation service keeps no per-run state, so a single instance is
    shared by every request through app.state.
    """
    settings = settings or get_settings()
    simulation_service = SimulationService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Startup complete | horizon_minutes=%s | sample_interval=%s | peak_window=%s",
            settings.horizon_minutes,
            settings.sample_interval_minutes,
            settings.peak_window_minutes,
        )
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(simulation_router)

    app.state.settings = settings
    app.state.simulation_service = simulation_service

    return app


# Module-level app object for uvicorn
app = create_app()
