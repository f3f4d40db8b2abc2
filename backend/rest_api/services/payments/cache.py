"""
Ephemeral payment cache.

Short-lived fingerprints of payments the gateway reported as approved,
keyed by store + gateway payment id. The reconciliation engine uses a hit
only to skip a provider fetch for a notification whose order is already
terminal in the database; a cache entry never changes an order.

Two backends:
- InMemoryPaymentCache: dict + expiry timestamps, periodic sweep task
- RedisPaymentCache: SETEX / GET / DEL with JSON values

Cache failures are logged and treated as a miss.
"""

import asyncio
import json
import time
from typing import Any, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.redis import get_redis_pool, is_redis_configured
from shared.infrastructure.redis.constants import PAYMENT_FINGERPRINT_TTL

logger = get_logger(__name__)


class PaymentCache(Protocol):
    """Async key/value store with per-entry TTL."""

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None: ...

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def delete(self, key: str) -> None: ...


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryPaymentCache:
    """
    Process-local cache. Entries expire lazily on read and are purged by
    sweep(), which the lifespan runs periodically.
    """

    def __init__(self, default_ttl: int = PAYMENT_FINGERPRINT_TTL, clock=time.monotonic):
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._default_ttl = default_ttl
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds or self._default_ttl
        self._entries[key] = (self._clock() + ttl, {**value, "cached_at": time.time()})

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            logger.debug("Payment cache swept", removed=len(expired), remaining=len(self._entries))
        return len(expired)


async def start_cache_sweeper(cache: InMemoryPaymentCache, interval_seconds: float) -> None:
    """Background loop purging expired in-memory entries."""
    logger.info("Payment cache sweeper started", interval_seconds=interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            cache.sweep()
        except Exception as e:
            logger.error("Payment cache sweep failed", error=str(e))


# =============================================================================
# Redis backend
# =============================================================================


class RedisPaymentCache:
    """Redis-backed cache; values are JSON strings with a native TTL."""

    def __init__(self, client: redis.Redis | None = None, default_ttl: int = PAYMENT_FINGERPRINT_TTL):
        self._client = client
        self._default_ttl = default_ttl

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis_pool()
        return self._client

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        payload = json.dumps({**value, "cached_at": time.time()}, default=str)
        try:
            client = await self._redis()
            await client.setex(key, ttl_seconds or self._default_ttl, payload)
        except RedisError as e:
            logger.warning("Payment cache write failed", key=key, error=str(e))

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            client = await self._redis()
            raw = await client.get(key)
        except RedisError as e:
            logger.warning("Payment cache read failed", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Payment cache entry is not JSON", key=key)
            return None

    async def delete(self, key: str) -> None:
        try:
            client = await self._redis()
            await client.delete(key)
        except RedisError as e:
            logger.warning("Payment cache delete failed", key=key, error=str(e))


# =============================================================================
# Factory
# =============================================================================

_payment_cache: PaymentCache | None = None


def build_payment_cache() -> PaymentCache:
    """Redis when REDIS_URL is configured, otherwise in-process."""
    ttl = settings.payment_cache_ttl_seconds
    if is_redis_configured():
        logger.info("Payment cache backend: redis", ttl_seconds=ttl)
        return RedisPaymentCache(default_ttl=ttl)
    logger.info("Payment cache backend: memory", ttl_seconds=ttl)
    return InMemoryPaymentCache(default_ttl=ttl)


def get_payment_cache() -> PaymentCache:
    """Process-wide cache singleton (FastAPI dependency)."""
    global _payment_cache
    if _payment_cache is None:
        _payment_cache = build_payment_cache()
    return _payment_cache
