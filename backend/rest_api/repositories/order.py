"""
Order Repository - the order record store.

Besides tenant-scoped reads it owns the conditional-update primitive every
payment transition goes through: an UPDATE guarded by the expected prior
state, which succeeds only if exactly one row changed.
"""

from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import Select, or_, select, update
from sqlalchemy.orm import selectinload

from rest_api.models import Order, OrderItem
from shared.config.constants import OrderStatus, PaymentStatus
from .base import BaseRepository


class OrderRepository(BaseRepository[Order]):
    """
    Repository for Order entities.

    Guarantees eager loading of items.
    """

    @property
    def model(self) -> type[Order]:
        return Order

    def _base_query(self, tenant_id: str) -> Select:
        return (
            select(Order)
            .where(Order.tenant_id == tenant_id)
            .options(selectinload(Order.items))
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, order_id: str, tenant_id: str | None = None) -> Order | None:
        """Fetch an order; tenant_id None is reserved for gateway-driven lookups."""
        query = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        if tenant_id is not None:
            query = query.where(Order.tenant_id == tenant_id)
        return self._db.scalar(query)

    def get_by_payment_id(self, payment_id: str, tenant_id: str | None = None) -> Order | None:
        """Find the order holding a gateway intent or settled payment id."""
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(or_(Order.payment_id == payment_id, Order.settled_payment_id == payment_id))
            .order_by(Order.created_at.desc())
        )
        if tenant_id is not None:
            query = query.where(Order.tenant_id == tenant_id)
        return self._db.scalars(query).first()

    def list_by_status(
        self,
        tenant_id: str,
        statuses: Iterable[str] | None = None,
        payment_statuses: Iterable[str] | None = None,
    ) -> Sequence[Order]:
        """A store's orders filtered by fulfilment and payment status, oldest first."""
        query = self._base_query(tenant_id)
        if statuses is not None:
            query = query.where(Order.status.in_(list(statuses)))
        if payment_statuses is not None:
            query = query.where(Order.payment_status.in_(list(payment_statuses)))
        query = query.order_by(Order.created_at.asc(), Order.id.asc())
        return self._db.execute(query).scalars().unique().all()

    def list_kitchen_queue(self, tenant_id: str) -> Sequence[Order]:
        """Paid orders still in the kitchen, oldest first."""
        return self.list_by_status(
            tenant_id,
            statuses=OrderStatus.KITCHEN_VISIBLE,
            payment_statuses=PaymentStatus.SETTLED,
        )

    def list_for_customer(self, tenant_id: str, customer_id: str, limit: int = 50) -> Sequence[Order]:
        """A customer's orders at a store, newest first."""
        query = (
            self._base_query(tenant_id)
            .where(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return self._db.execute(query).scalars().unique().all()

    def list_pending_older_than(self, cutoff: datetime, limit: int = 200) -> Sequence[Order]:
        """Orders of any store still awaiting payment and created before cutoff."""
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(
                Order.payment_status == PaymentStatus.PENDING,
                Order.created_at < cutoff,
            )
            .order_by(Order.created_at.asc())
            .limit(limit)
        )
        return self._db.execute(query).scalars().unique().all()

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, order: Order, items: list[OrderItem]) -> Order:
        """Insert an order and its lines in the caller's transaction."""
        order.items = items
        self._db.add(order)
        self._db.flush()
        return order

    def set_payment_id(self, order_id: str, payment_id: str, method: str | None) -> bool:
        """Attach a gateway intent to an order that is still awaiting payment."""
        return self.transition(
            order_id,
            expected_payment_status=PaymentStatus.PENDING,
            payment_id=payment_id,
            payment_method=method,
        )

    def transition(self, order_id: str, expected_payment_status: str, **values: Any) -> bool:
        """
        Compare-and-swap on payment_status.

        Applies `values` only if the order is still in
        `expected_payment_status`. Returns True iff exactly one row changed.
        """
        result = self._db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status == expected_payment_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def transition_status(
        self,
        order_id: str,
        tenant_id: str,
        expected_statuses: list[str],
        **values: Any,
    ) -> bool:
        """Compare-and-swap on fulfilment status for paid orders (kitchen side)."""
        result = self._db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.tenant_id == tenant_id,
                Order.status.in_(expected_statuses),
                Order.payment_status.in_(PaymentStatus.SETTLED),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
