"""
Order Domain Service.

Creates orders (reserving their stock in the same transaction), attaches
gateway intents and serves client reads. Payment outcomes are applied by
rest_api.services.payments.reconciliation, never here.
"""

import uuid
from typing import Sequence

from sqlalchemy.orm import Session

from shared.config.constants import OrderStatus, PaymentStatus
from shared.config.logging import orders_logger as logger
from shared.infrastructure.db import safe_commit
from rest_api.models import Order, OrderItem
from rest_api.repositories import OrderRepository, ProductRepository, StoreRepository
from rest_api.services.domain.inventory_ledger import (
    InventoryLedger,
    InsufficientStock,
    ProductNotFound,
    aggregate_lines,
)


class StoreNotFound(Exception):
    """Unknown store id."""

    def __init__(self, store_id: str):
        self.store_id = store_id
        super().__init__(f"Store {store_id} not found")


class OrderNotFound(Exception):
    """Order not found for the requesting store."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidOrderState(Exception):
    """Order is not in a state that allows the operation."""

    def __init__(self, order: Order, operation: str):
        self.order = order
        self.operation = operation
        super().__init__(
            f"Cannot {operation} order {order.id}: status={order.status}, "
            f"payment_status={order.payment_status}"
        )


def new_order_id() -> str:
    return f"order_{uuid.uuid4().hex}"


class OrderService:
    """
    Domain service for client-facing order operations.
    """

    def __init__(self, db: Session):
        self._db = db
        self._orders = OrderRepository(db)
        self._products = ProductRepository(db)
        self._stores = StoreRepository(db)
        self._ledger = InventoryLedger(db)

    def create_order(
        self,
        tenant_id: str,
        customer_name: str,
        items: list[tuple[int, int]],
        customer_id: str | None = None,
        observation: str | None = None,
    ) -> Order:
        """
        Create an order awaiting payment and reserve stock for every line.

        `items` is a list of (product_id, quantity). Prices and names are
        snapshotted from the catalog. Either every line is reserved and the
        order is committed, or nothing is written.

        Raises:
            StoreNotFound, ProductNotFound, InsufficientStock
        """
        if not items:
            raise ValueError("order must have at least one item")
        if not self._stores.exists(tenant_id):
            raise StoreNotFound(tenant_id)

        products = self._products.by_id_map(
            list(aggregate_lines(items).keys()), tenant_id
        )
        for product_id, _ in items:
            if product_id not in products:
                raise ProductNotFound(product_id, tenant_id)

        order_items = [
            OrderItem(
                product_id=product_id,
                product_name=products[product_id].name,
                quantity=quantity,
                unit_price_cents=products[product_id].price_cents,
            )
            for product_id, quantity in items
        ]
        order = Order(
            id=new_order_id(),
            tenant_id=tenant_id,
            customer_id=customer_id,
            customer_name=customer_name,
            total_cents=sum(i.quantity * i.unit_price_cents for i in order_items),
            observation=observation,
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=PaymentStatus.PENDING,
        )

        try:
            self._ledger.reserve_lines(tenant_id, items)
            self._orders.create(order, order_items)
            safe_commit(self._db)
        except (InsufficientStock, ProductNotFound):
            self._db.rollback()
            raise
        except Exception:
            self._db.rollback()
            logger.error("Order creation failed", tenant_id=tenant_id, exc_info=True)
            raise

        logger.info(
            "Order created",
            order_id=order.id,
            tenant_id=tenant_id,
            total_cents=order.total_cents,
            lines=len(order_items),
        )
        return order

    def get_order(self, tenant_id: str, order_id: str) -> Order:
        order = self._orders.get(order_id, tenant_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def list_customer_orders(self, tenant_id: str, customer_id: str) -> Sequence[Order]:
        return self._orders.list_for_customer(tenant_id, customer_id)

    def require_payable(self, tenant_id: str, order_id: str) -> Order:
        """Return the order if a payment intent may still be created for it."""
        order = self.get_order(tenant_id, order_id)
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidOrderState(order, "start payment for")
        return order

    def attach_payment(self, order: Order, payment_id: str, method: str) -> None:
        """
        Record the gateway intent on a still-pending order.

        If the order left "pending" in the meantime (expired, cancelled)
        the intent is not attached and InvalidOrderState is raised so the
        caller can cancel it at the gateway.
        """
        attached = self._orders.set_payment_id(order.id, payment_id, method)
        safe_commit(self._db)
        if not attached:
            self._db.refresh(order)
            raise InvalidOrderState(order, "attach payment to")
        self._db.refresh(order)
        logger.info(
            "Payment intent attached",
            order_id=order.id,
            payment_id=payment_id,
            method=method,
        )
