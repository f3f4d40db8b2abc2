"""
Catalog model: Product with stock and reservation counters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .store import Store


class Product(TimestampMixin, Base):
    """
    A sellable item.

    stock is nullable: NULL means unlimited and the ledger never touches it.
    stock_reserved counts units held by orders awaiting payment; it is only
    mutated through the inventory ledger's single-statement updates.
    """

    __tablename__ = "product"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("store.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(Text)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stock_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    store: Mapped["Store"] = relationship(back_populates="products")

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="chk_product_price_non_negative"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="chk_product_stock_non_negative"),
        CheckConstraint("stock_reserved >= 0", name="chk_product_reserved_non_negative"),
        Index("ix_product_tenant_id_id", "tenant_id", "id"),
    )

    @property
    def available(self) -> Optional[int]:
        """Units that can still be reserved (None = unlimited)."""
        if self.stock is None:
            return None
        return max(self.stock - self.stock_reserved, 0)

    def __repr__(self) -> str:
        return (
            f"<Product(id={self.id}, name='{self.name}', stock={self.stock}, "
            f"reserved={self.stock_reserved})>"
        )
