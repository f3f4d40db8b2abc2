"""
Application lifespan handler.
Creates tables, starts the background sweepers and tears them down on
shutdown.
"""

import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from shared.config.logging import rest_api_logger as logger, setup_logging
from shared.config.settings import settings
from shared.infrastructure.db import SessionLocal, engine
from shared.infrastructure.redis import close_redis_pool
from rest_api.models import Base
from rest_api.services.payments.cache import (
    InMemoryPaymentCache,
    get_payment_cache,
    start_cache_sweeper,
)
from rest_api.services.payments.credentials import get_gateway_factory
from rest_api.services.payments.reconciliation import (
    ReconciliationEngine,
    start_expiry_sweeper,
)


def check_configuration() -> None:
    """Log configuration errors; refuse to start in production when there are any."""
    errors = settings.validate_production_secrets()
    if not errors:
        return
    for error in errors:
        logger.error("Configuration error", error=error)
    if settings.environment == "production":
        raise RuntimeError(
            f"Production configuration errors: {'; '.join(errors)}. "
            "Server will not start with insecure configuration."
        )
    logger.warning("Running with insecure defaults (acceptable for development only)")


def start_background_tasks() -> list[asyncio.Task]:
    tasks = []

    reconciliation = ReconciliationEngine(SessionLocal, get_gateway_factory(), get_payment_cache())
    tasks.append(asyncio.create_task(
        start_expiry_sweeper(reconciliation, settings.expiry_sweep_interval_seconds),
        name="order-expiry-sweeper",
    ))

    cache = get_payment_cache()
    if isinstance(cache, InMemoryPaymentCache):
        tasks.append(asyncio.create_task(
            start_cache_sweeper(cache, settings.payment_cache_sweep_seconds),
            name="payment-cache-sweeper",
        ))
    return tasks


async def stop_background_tasks(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    check_configuration()

    logger.info("Starting kiosk API", port=settings.rest_api_port, env=settings.environment)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    tasks = start_background_tasks()
    logger.info("Background tasks started", tasks=[t.get_name() for t in tasks])

    yield

    logger.info("Shutting down kiosk API")
    await stop_background_tasks(tasks)
    await close_redis_pool()
    logger.info("Background tasks stopped, Redis pool closed")
