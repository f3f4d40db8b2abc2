"""
Circuit Breaker for Mercado Pago calls.

Keeps a dead gateway from stalling every kiosk poll:
1. CLOSED: Normal operation, requests pass through
2. OPEN: After failures exceed threshold, requests fail fast
3. HALF-OPEN: After timeout, allow test requests to check recovery

Only transport errors and 5xx responses count as failures; business
answers such as 404 or 409 are returned through the breaker untouched.

Usage:
    from rest_api.services.payments.circuit_breaker import mercadopago_breaker

    async with mercadopago_breaker.call():
        response = await client.get(...)
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker instance."""
    name: str
    failure_threshold: int = 5       # Failures before opening
    success_threshold: int = 2       # Successes in half-open before closing
    timeout_seconds: float = 30.0    # Time before trying half-open
    half_open_max_calls: int = 3     # Max concurrent calls in half-open
    # Exceptions that pass through without counting as a failure
    excluded_exceptions: tuple[type[BaseException], ...] = ()


@dataclass
class CircuitBreakerStats:
    """Statistics for monitoring circuit breaker behavior."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreakerError(Exception):
    """Raised when circuit is open and request is rejected."""
    def __init__(self, breaker_name: str, retry_after: float):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{breaker_name}' is open. Retry after {retry_after:.1f}s")


class CircuitBreaker:
    """
    Circuit breaker for external service calls.

    Coroutine-safe via a single asyncio lock.
    """

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._half_open_calls = 0
        self._lock = asyncio.Lock()
        self._stats = CircuitBreakerStats()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state with logging. Caller holds the lock."""
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        logger.info(
            f"Circuit breaker '{self.config.name}' state change",
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self._failure_count,
            success_count=self._success_count,
        )

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0

    def _timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return time.time() - self._last_failure_time >= self.config.timeout_seconds

    async def _can_attempt(self) -> tuple[bool, float]:
        """Returns (can_attempt, retry_after_seconds)."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True, 0.0

            if self._state == CircuitState.OPEN:
                if self._timeout_elapsed():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._half_open_calls += 1
                    return True, 0.0
                retry_after = self.config.timeout_seconds - (
                    time.time() - (self._last_failure_time or 0)
                )
                return False, max(0.0, retry_after)

            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True, 0.0
            return False, 1.0

    async def record_success(self) -> None:
        """Record a successful call."""
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            self._stats.last_success_time = time.time()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                self._half_open_calls = max(0, self._half_open_calls - 1)
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        """Record a failed call."""
        async with self._lock:
            now = time.time()
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._stats.last_failure_time = now
            self._last_failure_time = now
            self._failure_count += 1

            if error:
                logger.warning(
                    f"Circuit breaker '{self.config.name}' recorded failure",
                    error=str(error),
                    failure_count=self._failure_count,
                    threshold=self.config.failure_threshold,
                )

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    @asynccontextmanager
    async def call(self) -> AsyncGenerator[None, None]:
        """
        Context manager for making a protected call.

        Raises:
            CircuitBreakerError: If circuit is open
        """
        can_attempt, retry_after = await self._can_attempt()

        if not can_attempt:
            self._stats.rejected_calls += 1
            raise CircuitBreakerError(self.config.name, retry_after)

        try:
            yield
        except self.config.excluded_exceptions:
            await self.record_success()
            raise
        except Exception as e:
            await self.record_failure(e)
            raise
        else:
            await self.record_success()

    async def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        async with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._last_failure_time = None
            logger.info(f"Circuit breaker '{self.config.name}' manually reset")

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "total_calls": self.stats.total_calls,
            "successful_calls": self.stats.successful_calls,
            "failed_calls": self.stats.failed_calls,
            "rejected_calls": self.stats.rejected_calls,
            "state_changes": self.stats.state_changes,
        }


# =============================================================================
# Pre-configured Circuit Breakers
# =============================================================================

# Opens after 5 failures, closes after 2 successes in half-open
mercadopago_breaker = CircuitBreaker(
    CircuitBreakerConfig(
        name="mercadopago",
        failure_threshold=5,
        success_threshold=2,
        timeout_seconds=30.0,
        half_open_max_calls=2,
    )
)

_BREAKERS: dict[str, CircuitBreaker] = {
    "mercadopago": mercadopago_breaker,
}


def get_all_breaker_stats() -> dict[str, dict]:
    """Statistics for all circuit breakers (health endpoint)."""
    return {name: breaker.snapshot() for name, breaker in _BREAKERS.items()}
