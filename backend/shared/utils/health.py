"""
Health check helpers.

Every dependency probe is an async function decorated with
health_check_with_timeout; the decorator measures latency and turns
timeouts and exceptions into an "unhealthy" result instead of raising.

Usage:
    @health_check_with_timeout(timeout=3.0, component="redis")
    async def check_redis_health():
        await redis.ping()
        return {"max_connections": 50}
"""

from __future__ import annotations

import asyncio
import functools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine

from shared.config.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass
class HealthCheckResult:
    """Outcome of one dependency probe."""

    status: HealthStatus
    component: str
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (HealthStatus.HEALTHY, HealthStatus.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value, "component": self.component}
        if self.latency_ms is not None:
            result["latency_ms"] = round(self.latency_ms, 2)
        if self.error:
            result["error"] = self.error
        if self.details:
            result["details"] = self.details
        return result


def health_check_with_timeout(timeout: float = 5.0, component: str | None = None):
    """
    Wrap an async probe so it returns a HealthCheckResult.

    The probe may return a dict of details. Returning
    {"skipped": True, ...} marks the dependency as not configured.
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, dict[str, Any] | None]]
    ) -> Callable[..., Coroutine[Any, Any, HealthCheckResult]]:
        name = component or func.__name__.removeprefix("check_").removesuffix("_health")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> HealthCheckResult:
            started = time.perf_counter()
            try:
                details = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                elapsed = (time.perf_counter() - started) * 1000
                logger.warning("Health check timeout", component=name, timeout=timeout)
                return HealthCheckResult(
                    status=HealthStatus.UNHEALTHY,
                    component=name,
                    latency_ms=elapsed,
                    error=f"timeout after {timeout}s",
                )
            except Exception as e:
                elapsed = (time.perf_counter() - started) * 1000
                logger.warning("Health check failed", component=name, error=str(e))
                return HealthCheckResult(
                    status=HealthStatus.UNHEALTHY,
                    component=name,
                    latency_ms=elapsed,
                    error=str(e),
                )

            details = details if isinstance(details, dict) else {}
            status = HealthStatus.SKIPPED if details.pop("skipped", False) else HealthStatus.HEALTHY
            return HealthCheckResult(
                status=status,
                component=name,
                latency_ms=(time.perf_counter() - started) * 1000,
                details=details,
            )

        return wrapper

    return decorator


async def aggregate_health_checks(
    checks: list[Coroutine[Any, Any, HealthCheckResult]],
) -> dict[str, Any]:
    """
    Run probes concurrently. Overall status is "degraded" when any probe
    is unhealthy.
    """
    results = await asyncio.gather(*checks, return_exceptions=True)

    components: dict[str, dict] = {}
    healthy = True
    for result in results:
        if isinstance(result, HealthCheckResult):
            components[result.component] = result.to_dict()
            healthy = healthy and result.ok
        elif isinstance(result, Exception):
            components["unknown"] = {"status": HealthStatus.UNHEALTHY.value, "error": str(result)}
            healthy = False

    return {
        "status": HealthStatus.HEALTHY.value if healthy else HealthStatus.DEGRADED.value,
        "components": components,
    }
