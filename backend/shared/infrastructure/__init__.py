"""
Infrastructure module: Database, Redis and request correlation.

Provides:
- Database sessions and transactions (db.py)
- Async Redis pool (redis/)
- Correlation id middleware and logging filter (correlation.py)
"""

from shared.infrastructure.db import (
    engine,
    SessionLocal,
    get_db,
    get_db_context,
    get_session_factory,
    safe_commit,
)
from shared.infrastructure.redis import (
    get_redis_pool,
    close_redis_pool,
    is_redis_configured,
)

__all__ = [
    # db
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "get_session_factory",
    "safe_commit",
    # redis
    "get_redis_pool",
    "close_redis_pool",
    "is_redis_configured",
]
