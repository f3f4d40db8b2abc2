"""
Kitchen Domain Service.

The kitchen sees only orders that are paid and not yet completed, oldest
first. Fulfilment moves active -> preparing -> completed; each step is a
conditional update so two screens tapping the same order cannot both
apply it.
"""

from typing import Sequence

from sqlalchemy.orm import Session

from shared.config.constants import OrderStatus
from shared.config.logging import kitchen_logger as logger
from shared.infrastructure.db import safe_commit
from rest_api.models import Order, utcnow
from rest_api.repositories import OrderRepository
from rest_api.services.domain.order_service import InvalidOrderState, OrderNotFound


class KitchenService:
    """Domain service for the kitchen display."""

    def __init__(self, db: Session):
        self._db = db
        self._orders = OrderRepository(db)

    def list_queue(self, tenant_id: str) -> Sequence[Order]:
        """Paid orders in active/preparing for a store, oldest first."""
        return self._orders.list_kitchen_queue(tenant_id)

    def _advance(self, tenant_id: str, order_id: str, expected: list[str], operation: str, **values) -> Order:
        changed = self._orders.transition_status(order_id, tenant_id, expected, **values)
        safe_commit(self._db)

        order = self._orders.get(order_id, tenant_id)
        if order is None:
            raise OrderNotFound(order_id)
        self._db.refresh(order)
        if not changed:
            raise InvalidOrderState(order, operation)

        logger.info("Kitchen order updated", order_id=order_id, tenant_id=tenant_id, status=order.status)
        return order

    def start_preparing(self, tenant_id: str, order_id: str) -> Order:
        return self._advance(
            tenant_id,
            order_id,
            [OrderStatus.ACTIVE],
            "start preparing",
            status=OrderStatus.PREPARING,
        )

    def complete(self, tenant_id: str, order_id: str) -> Order:
        return self._advance(
            tenant_id,
            order_id,
            OrderStatus.KITCHEN_VISIBLE,
            "complete",
            status=OrderStatus.COMPLETED,
            completed_at=utcnow(),
        )
