"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the allocation service, registers the router, and runs startup checks.

Usage (via launcher):
    python main.py serve

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from dispatching.controllers.allocation_controller import router as allocation_router
from dispatching.services.allocation_service import AllocationOptimizationService
from dispatching.services.auth_service import AuthService
from dispatching.services.solver_adapter import pywraplp
from dispatching.utils.config import get_settings
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services live on app.state and are resolved by controller dependencies.
    """
    settings = get_settings()

    allocation_service = AllocationOptimizationService(settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup checks before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(allocation_router)

    app.state.allocation_service = allocation_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """Report solver availability; requests fail with 503 when it is missing."""
    settings = app.state.allocation_service.settings

    if pywraplp is None:
        logger.warning("Startup: OR-Tools is not installed; optimization requests will fail")
    else:
        logger.info(
            "Startup: solver ready | backend=%s | time_limit_s=%s",
            settings.allocation_solver_backend,
            settings.allocation_solver_max_time_seconds,
        )
    logger.info("Startup complete | auth_enabled=%s", app.state.auth_service.auth_enabled)


# Module-level app object for uvicorn
app = create_app()
