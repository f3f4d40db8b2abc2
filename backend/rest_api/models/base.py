"""
Base class and TimestampMixin for all SQLAlchemy ORM models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """
    Mixin providing audit timestamps.

    created_at is set in Python (UTC) rather than by the database so the
    expiry sweep compares like with like on every backend.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        id_val = getattr(self, "id", None)
        return f"<{class_name}(id={id_val})>"
