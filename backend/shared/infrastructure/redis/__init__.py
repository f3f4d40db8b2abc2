"""Redis connection pool and key/TTL constants."""

from shared.infrastructure.redis.pool import (
    get_redis_pool,
    close_redis_pool,
    is_redis_configured,
)

__all__ = ["get_redis_pool", "close_redis_pool", "is_redis_configured"]
