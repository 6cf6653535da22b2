"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from canteen.controllers.analytics_controller import router as analytics_router
from canteen.controllers.auth_controller import router as auth_router
from canteen.controllers.booking_controller import router as booking_router
from canteen.controllers.menu_controller import router as menu_router
from canteen.controllers.roster_controller import router as roster_router
from canteen.controllers.staff_controller import router as staff_router
from canteen.repository.data_repository import DataRepository
from canteen.services.alert_service import AlertingService
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.auth_service import AuthService
from canteen.services.booking_service import BookingLifecycleService
from canteen.services.queue_service import TokenQueueService
from canteen.services.slot_service import SlotRegistryService
from canteen.services.staff_service import StaffRosterService
from canteen.utils.clock import Clock
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    One queue service is shared by every consumer so they also share its
    per-slot locks.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = DataRepository(settings)
    queue_service = TokenQueueService(repository=repository, settings=settings, clock=clock)
    booking_service = BookingLifecycleService(
        queue=queue_service,
        repository=repository,
        settings=settings,
    )
    slot_service = SlotRegistryService(repository=repository, settings=settings)
    analytics_service = CrowdAnalyticsService(
        repository=repository,
        settings=settings,
        clock=clock,
        queue=queue_service,
    )
    alert_service = AlertingService(repository=repository, settings=settings, clock=clock)
    staff_roster_service = StaffRosterService(repository=repository, settings=settings, clock=clock)
    auth_service = AuthService(settings=settings, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(auth_router)
    app.include_router(booking_router)
    app.include_router(staff_router)
    app.include_router(menu_router)
    app.include_router(analytics_router)
    app.include_router(roster_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.queue_service = queue_service
    app.state.booking_service = booking_service
    app.state.slot_service = slot_service
    app.state.analytics_service = analytics_service
    app.state.alert_service = alert_service
    app.state.staff_roster_service = staff_roster_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before the default catalog is seeded; seeding is
    skipped when slots already exist.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema | path=%s", repository.database_path)
    repository.initialize_database()

    if settings.seed_default_catalog:
        logger.info("Startup: seeding default slots and menu (skipped if slots exist)")
        repository.seed_default_catalog()

    if not app.state.auth_service.auth_enabled:
        logger.warning("Startup: no access codes configured, authentication is disabled")

    logger.info("Startup complete | slots_seeded=%s", settings.seed_default_catalog)


# Module-level app object for uvicorn
app = create_app()
