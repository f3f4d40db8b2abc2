"""
Health check endpoints for the REST API.
Basic liveness plus a detailed view of the database, Redis (when
configured) and the gateway circuit breaker.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shared.config.settings import settings
from shared.infrastructure.db import SessionLocal
from shared.infrastructure.redis import get_redis_pool, is_redis_configured
from shared.utils.health import (
    HealthStatus,
    aggregate_health_checks,
    health_check_with_timeout,
)
from rest_api.services.payments.circuit_breaker import get_all_breaker_stats


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health_check():
    """Liveness: no dependency is checked."""
    return {
        "status": "healthy",
        "service": "kiosk-api",
        "environment": settings.environment,
    }


@health_check_with_timeout(timeout=3.0, component="database")
async def check_database_health() -> dict:
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))
    return {"dialect": db.bind.dialect.name}


@health_check_with_timeout(timeout=3.0, component="redis")
async def check_redis_health() -> dict:
    if not is_redis_configured():
        return {"skipped": True, "backend": "memory"}
    pool = await get_redis_pool()
    await pool.ping()
    return {"max_connections": settings.redis_pool_max_connections}


@router.get("/health/detailed")
async def detailed_health_check():
    """
    Dependency health. Returns 503 when a configured dependency is down;
    an open circuit is reported but does not fail the check.
    """
    results = await aggregate_health_checks([
        check_database_health(),
        check_redis_health(),
    ])

    checks = {
        "service": "kiosk-api",
        "environment": settings.environment,
        "status": results["status"],
        "dependencies": results["components"],
        "circuit_breakers": get_all_breaker_stats(),
    }

    if results["status"] != HealthStatus.HEALTHY.value:
        return JSONResponse(content=checks, status_code=503)
    return checks
