"""
app.py: FastAPI application factory and startup lifecycle.

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

from hostel.clients.mpesa_client import DarajaGateway, PaymentGateway
from hostel.controllers.auth_controller import router as auth_router
from hostel.controllers.booking_controller import router as booking_router
from hostel.controllers.laundry_controller import router as laundry_router
from hostel.controllers.notification_controller import router as notification_router
from hostel.controllers.payment_controller import router as payment_router
from hostel.controllers.student_controller import router as student_router
from hostel.repository.store import SQLiteStore
from hostel.services.allocation_service import BookingApprovalService
from hostel.services.auth_service import AuthService
from hostel.services.laundry_service import LaundryService
from hostel.services.notification_service import NotificationService
from hostel.services.payment_service import PaymentWorkflowService
from hostel.services.student_service import StudentService
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.config import Settings, get_settings
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Tests pass their own settings, gateway and clock; production uses the
    environment, Daraja and the system clock.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()

    # --- Store (connection per operation, shared change feed) ---
    store = SQLiteStore(settings)

    # --- Services ---
    gateway = gateway or DarajaGateway(settings=settings, clock=clock)
    notification_service = NotificationService(store=store, settings=settings, clock=clock)
    allocation_service = BookingApprovalService(
        store=store,
        notification_service=notification_service,
        clock=clock,
    )
    payment_service = PaymentWorkflowService(
        store=store,
        gateway=gateway,
        notification_service=notification_service,
        settings=settings,
        clock=clock,
    )
    laundry_service = LaundryService(
        store=store,
        notification_service=notification_service,
        clock=clock,
    )
    student_service = StudentService(
        store=store,
        allocation_service=allocation_service,
        payment_service=payment_service,
        notification_service=notification_service,
        laundry_service=laundry_service,
    )
    auth_service = AuthService(settings=settings, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(booking_router)
    app.include_router(payment_router)
    app.include_router(laundry_router)
    app.include_router(notification_router)
    app.include_router(student_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.store = store
    app.state.notification_service = notification_service
    app.state.allocation_service = allocation_service
    app.state.payment_service = payment_service
    app.state.laundry_service = laundry_service
    app.state.student_service = student_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before seeding; seeding is skipped when rooms exist.
    """
    store: SQLiteStore = app.state.store

    logger.info("Startup: initializing database schema")
    store.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo rooms and profiles (skipped if rooms exist)")
        store.seed_demo_data()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
