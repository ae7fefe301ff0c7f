"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the slot calendar, ledger and services, registers routers, and
starts the lock expiry reaper.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from backend.controllers.banner_controller import router as banner_router
from backend.domain.constraints import InventoryConfig
from backend.domain.pricing import PricingEngine
from backend.repository.application_ledger import ApplicationLedger
from backend.repository.data_repository import DataRepository
from backend.repository.slot_calendar import SlotCalendar
from backend.services.availability_service import AvailabilityService
from backend.services.reaper_service import LockExpiryReaper, reaper_loop
from backend.services.reservation_service import ReservationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Storage ---
    repository = DataRepository(settings)
    config = InventoryConfig.from_settings(settings)
    pricing = PricingEngine(config)
    calendar = SlotCalendar(repository, pricing)
    ledger = ApplicationLedger(repository)

    # --- Services ---
    availability_service = AvailabilityService(calendar, pricing, config, clock=clock)
    reservation_service = ReservationService(calendar, ledger, pricing, config, clock=clock)
    reaper = LockExpiryReaper(calendar, ledger, settings=settings, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        reaper_task: asyncio.Task | None = None
        if settings.reaper_enabled:
            reaper_task = asyncio.create_task(
                reaper_loop(reaper, settings.reaper_interval_seconds)
            )
        yield
        if reaper_task is not None:
            reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper_task

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(banner_router)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.pricing = pricing
    app.state.calendar = calendar
    app.state.ledger = ledger
    app.state.availability_service = availability_service
    app.state.reservation_service = reservation_service
    app.state.reaper = reaper

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema creation comes first; a reaper pass then clears holds that
    expired while the service was down.
    """
    repository: DataRepository = app.state.repository
    reaper: LockExpiryReaper = app.state.reaper

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: releasing holds that expired while offline")
    reaper.run_once()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
