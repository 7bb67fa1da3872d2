"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers, and lifespan events.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.gateway import InMemoryOrderGateway, PretixOrderGateway
from src.adapters.repository import (
    InMemoryEventCatalog,
    InMemoryRegistrationStore,
    InMemoryRetryRecordStore,
    PostgresEventCatalog,
    PostgresRegistrationStore,
    PostgresRetryRecordStore,
    run_migrations,
)
from src.adapters.runtime import AsyncioRetryScheduler, SystemClock
from src.api.errors import register_exception_handlers
from src.api.v1 import router as v1_router
from src.config.settings import Settings, get_settings
from src.domain.eligibility import EligibilityPolicy
from src.domain.models import Event
from src.domain.ports import (
    Clock,
    EventCatalog,
    OrderGateway,
    RegistrationStore,
    RetryRecordStore,
    RetryScheduler,
)
from src.domain.registration import RegistrationService
from src.domain.retry import BackoffPolicy, RetryService

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3600

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Registration API v1 - Create, modify, cancel and audit event registrations",
    },
]


@dataclass
class Services:
    registration: RegistrationService
    retry: RetryService


def build_services(
    settings: Settings,
    store: RegistrationStore,
    events: EventCatalog,
    retry_records: RetryRecordStore,
    gateway: OrderGateway,
    scheduler: RetryScheduler,
    clock: Clock,
) -> Services:
    """Wire the domain services from settings and adapters."""
    registration_service = RegistrationService(
        store=store,
        events=events,
        gateway=gateway,
        clock=clock,
        policy=EligibilityPolicy(
            blackout_days=settings.modification_blackout_days,
            max_modifications=settings.max_modifications,
            allow_cancel_in_blackout=settings.allow_cancel_in_blackout,
        ),
        gateway_timeout_seconds=settings.gateway_timeout_seconds,
    )
    retry_service = RetryService(
        records=retry_records,
        attempt=registration_service.create_registration,
        registrations=store,
        scheduler=scheduler,
        clock=clock,
        backoff=BackoffPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            multiplier=settings.retry_backoff_multiplier,
            max_delay_ms=settings.retry_max_delay_ms,
        ),
    )
    return Services(registration=registration_service, retry=retry_service)


def _build_gateway(settings: Settings, clock: Clock) -> OrderGateway:
    if settings.gateway_backend == "pretix":
        logger.info("Using pretix order gateway organizer=%s", settings.pretix_organizer_slug)
        return PretixOrderGateway(
            base_url=settings.pretix_api_url,
            api_token=settings.pretix_api_token,
            organizer_slug=settings.pretix_organizer_slug,
            timeout_seconds=settings.gateway_timeout_seconds,
            clock=clock,
        )
    logger.info("Using in-memory order gateway")
    return InMemoryOrderGateway()


async def _cleanup_loop(retry_service: RetryService, max_age_hours: int) -> None:
    while True:
        try:
            retry_service.cleanup_expired(max_age_hours)
        except Exception:
            logger.exception("Retry record cleanup failed")
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Configures logging
    - Creates the storage backend (in-memory, or pool + migrations)
    - Creates the order gateway and retry scheduler
    - Seeds configured events and wires the domain services
    - Stops scheduled retries and closes resources on shutdown
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    logger.info("Starting application...")
    clock = SystemClock()
    pool = None

    if settings.storage_backend == "postgres":
        logger.info("Connecting to database...")
        # Create connection pool with explicit sizing
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )

        logger.info("Running database migrations...")
        run_migrations(pool)

        store = PostgresRegistrationStore(pool, clock=clock)
        events = PostgresEventCatalog(pool)
        retry_records = PostgresRetryRecordStore(pool)
    else:
        logger.info("Using in-memory storage")
        store = InMemoryRegistrationStore(clock=clock)
        events = InMemoryEventCatalog()
        retry_records = InMemoryRetryRecordStore()

    for seed in settings.events:
        events.add(Event(id=seed.id, name=seed.name, start_date=seed.start_date, end_date=seed.end_date))
    if settings.events:
        logger.info("Seeded %s event(s)", len(settings.events))

    gateway = _build_gateway(settings, clock)
    scheduler = AsyncioRetryScheduler()
    services = build_services(settings, store, events, retry_records, gateway, scheduler, clock)

    # Store everything in app state for dependency injection
    app.state.settings = settings
    app.state.pool = pool
    app.state.store = store
    app.state.events = events
    app.state.gateway = gateway
    app.state.registration_service = services.registration
    app.state.retry_service = services.retry

    cleanup_task = asyncio.create_task(_cleanup_loop(services.retry, settings.retry_max_age_hours))

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    await scheduler.shutdown()
    if isinstance(gateway, PretixOrderGateway):
        await gateway.aclose()
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="templereg",
        description="Temple event registration lifecycle and retry engine",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # Include v1 API routes
    app.include_router(v1_router, prefix="/v1")

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint.

        Returns 200 OK with the storage backend in use. With PostgreSQL
        storage, the database connection is validated and a failure raises.
        """
        pool = request.app.state.pool
        if pool is not None:
            with pool.connection() as conn:
                conn.execute("SELECT 1")
        return {"status": "healthy", "storage": request.app.state.settings.storage_backend}

    return app


app = create_app()
