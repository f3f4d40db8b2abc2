"""
Tests for OrderService - order creation with stock reservation.
"""

import pytest

from rest_api.models import Order
from rest_api.services.domain import (
    InsufficientStock,
    InvalidOrderState,
    OrderNotFound,
    OrderService,
    ProductNotFound,
    StoreNotFound,
)
from shared.config.constants import OrderStatus, PaymentMethod, PaymentStatus


class TestCreateOrder:

    @pytest.fixture
    def service(self, db_session):
        return OrderService(db_session)

    def test_creates_pending_order_and_reserves_stock(self, service, seed_products, stock_of):
        burger, soda = seed_products["burger"], seed_products["soda"]

        order = service.create_order(
            tenant_id="store-1",
            customer_name="Ana",
            items=[(burger.id, 2), (soda.id, 1)],
            customer_id="cust-1",
            observation="no onions",
        )

        assert order.id.startswith("order_")
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.payment_status == PaymentStatus.PENDING
        assert order.total_cents == 2 * 2500 + 600
        assert [(i.product_name, i.quantity, i.unit_price_cents) for i in order.items] == [
            ("Burger", 2, 2500),
            ("Soda", 1, 600),
        ]
        assert stock_of(burger) == (10, 2)
        assert stock_of(soda) == (2, 1)

    def test_unlimited_products_need_no_reservation(self, service, seed_products, stock_of):
        fries = seed_products["fries"]

        order = service.create_order("store-1", "Ana", [(fries.id, 30)])

        assert order.total_cents == 30 * 1200
        assert stock_of(fries) == (None, 0)

    def test_shortfall_writes_nothing(self, service, db_session, seed_products, stock_of):
        burger, soda = seed_products["burger"], seed_products["soda"]

        with pytest.raises(InsufficientStock) as exc_info:
            service.create_order("store-1", "Ana", [(burger.id, 1), (soda.id, 3)])

        assert exc_info.value.available == 2
        assert stock_of(burger) == (10, 0)
        assert stock_of(soda) == (2, 0)
        assert db_session.query(Order).count() == 0

    def test_unknown_product(self, service, seed_products):
        with pytest.raises(ProductNotFound):
            service.create_order("store-1", "Ana", [(424242, 1)])

    def test_unknown_store(self, service, seed_products):
        with pytest.raises(StoreNotFound):
            service.create_order("nowhere", "Ana", [(seed_products["burger"].id, 1)])

    def test_empty_order_rejected(self, service, seed_store):
        with pytest.raises(ValueError):
            service.create_order("store-1", "Ana", [])


class TestOrderReads:

    def test_get_order_is_tenant_scoped(self, db_session, seed_products, other_store):
        service = OrderService(db_session)
        order = service.create_order("store-1", "Ana", [(seed_products["burger"].id, 1)])

        assert service.get_order("store-1", order.id).id == order.id
        with pytest.raises(OrderNotFound):
            service.get_order(other_store.id, order.id)

    def test_list_customer_orders(self, db_session, seed_products):
        service = OrderService(db_session)
        burger = seed_products["burger"]
        first = service.create_order("store-1", "Ana", [(burger.id, 1)], customer_id="cust-1")
        second = service.create_order("store-1", "Ana", [(burger.id, 1)], customer_id="cust-1")
        service.create_order("store-1", "Bo", [(burger.id, 1)], customer_id="cust-2")

        ids = {o.id for o in service.list_customer_orders("store-1", "cust-1")}
        assert ids == {first.id, second.id}


class TestAttachPayment:

    def test_attach_payment_records_intent(self, db_session, seed_products):
        service = OrderService(db_session)
        order = service.create_order("store-1", "Ana", [(seed_products["burger"].id, 1)])

        service.attach_payment(order, "intent-1", PaymentMethod.CREDIT)

        assert order.payment_id == "intent-1"
        assert order.payment_method == PaymentMethod.CREDIT

    def test_require_payable_rejects_settled_order(self, db_session, seed_products):
        service = OrderService(db_session)
        order = service.create_order("store-1", "Ana", [(seed_products["burger"].id, 1)])
        order.payment_status = PaymentStatus.CANCELED
        db_session.commit()

        with pytest.raises(InvalidOrderState):
            service.require_payable("store-1", order.id)

    def test_attach_to_non_pending_order_raises(self, db_session, seed_products):
        service = OrderService(db_session)
        order = service.create_order("store-1", "Ana", [(seed_products["burger"].id, 1)])
        order.payment_status = PaymentStatus.CANCELED
        order.status = OrderStatus.CANCELED
        db_session.commit()

        with pytest.raises(InvalidOrderState):
            service.attach_payment(order, "intent-late", PaymentMethod.PIX)
        assert order.payment_id is None
