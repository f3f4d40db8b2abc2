"""
Multi-tenancy model: Store.

A store is the tenant: it owns a catalog, orders and, optionally,
its own Mercado Pago credentials and Point terminal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .catalog import Product
    from .order import Order


class Store(TimestampMixin, Base):
    """
    Represents a kiosk operator (top-level tenant).
    Every product and order belongs to exactly one store.
    """

    __tablename__ = "store"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # Per-store gateway credentials (null = use the deployment defaults)
    mp_access_token: Mapped[Optional[str]] = mapped_column(Text)
    mp_device_id: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    products: Mapped[list["Product"]] = relationship(back_populates="store")
    orders: Mapped[list["Order"]] = relationship(back_populates="store")

    def __repr__(self) -> str:
        return f"<Store(id='{self.id}', name='{self.name}')>"
