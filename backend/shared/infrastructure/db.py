"""
Database configuration and session management.
SQLAlchemy 2.0 sync engine with one session per request / background task.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from shared.config.settings import DATABASE_URL


def _calculate_pool_size() -> int:
    """Pool size from CPU cores: (2 * cores) + 1, capped at 20."""
    cores = os.cpu_count() or 4
    return min(cores * 2 + 1, 20)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local single-file deployments (kiosk box without Postgres)
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": _calculate_pool_size(),
        "max_overflow": 15,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"connect_timeout": 10},
    }


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.get("/orders/{order_id}")
        def get_order(order_id: str, db: Session = Depends(get_db)):
            ...

    The session is automatically closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """
    FastAPI dependency returning the session factory.

    Background work (webhook reconciliation, expiry sweep) outlives the
    request, so it opens its own sessions from this factory.
    """
    return SessionLocal


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            db.scalars(select(Order)).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> None:
    """
    Commit with automatic rollback on failure.

    Raises the original exception after rolling back.
    """
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
