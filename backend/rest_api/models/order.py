"""
Order Models: Order, OrderItem.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import OrderStatus, PaymentStatus

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .store import Store


class Order(TimestampMixin, Base):
    """
    A kiosk order.

    The id doubles as the gateway external_reference. Fulfilment status and
    payment status move independently; payment_status only leaves "pending"
    through the compare-and-swap in OrderRepository.transition().
    """

    __tablename__ = "kiosk_order"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("store.id"), nullable=False, index=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    observation: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[str] = mapped_column(
        String(32), default=OrderStatus.PENDING_PAYMENT, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(32), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(16))
    # Gateway intent id (PIX payment id or Point payment-intent id)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    # Settled gateway payment id once approved
    settled_payment_id: Mapped[Optional[str]] = mapped_column(String(100))
    payment_reason: Mapped[Optional[str]] = mapped_column(String(64))

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    store: Mapped["Store"] = relationship(back_populates="orders")
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", order_by="OrderItem.id"
    )

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="chk_order_total_non_negative"),
        # Kitchen feed: tenant + status, oldest first
        Index("ix_order_tenant_status_created", "tenant_id", "status", "created_at"),
        # Expiry sweep
        Index("ix_order_payment_status_created", "payment_status", "created_at"),
    )

    @property
    def is_payment_terminal(self) -> bool:
        return self.payment_status in PaymentStatus.TERMINAL

    def __repr__(self) -> str:
        return (
            f"<Order(id='{self.id}', status='{self.status}', "
            f"payment_status='{self.payment_status}', tenant='{self.tenant_id}')>"
        )


class OrderItem(Base):
    """
    A line of an order. Name and unit price are snapshots taken when the
    order is created; lines are never edited afterwards.
    """

    __tablename__ = "kiosk_order_item"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("kiosk_order.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), ForeignKey("product.id"), nullable=False, index=True
    )
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_item_quantity_positive"),
        CheckConstraint("unit_price_cents >= 0", name="chk_order_item_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
