"""
Builders turning ORM objects and engine outcomes into response schemas.
"""

from shared.config.constants import reason_message
from shared.utils.schemas import (
    KitchenOrderOutput,
    OrderItemOutput,
    OrderOutput,
    PaymentPollResponse,
)
from rest_api.models import Order
from rest_api.services.payments.reconciliation import ReconciliationOutcome


def build_items(order: Order) -> list[OrderItemOutput]:
    return [
        OrderItemOutput(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
        for item in order.items
    ]


def build_order_output(order: Order) -> OrderOutput:
    return OrderOutput(
        id=order.id,
        store_id=order.tenant_id,
        customer_id=order.customer_id,
        customer_name=order.customer_name,
        items=build_items(order),
        total_cents=order.total_cents,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        payment_id=order.payment_id,
        payment_reason=order.payment_reason,
        payment_message=reason_message(order.payment_reason),
        observation=order.observation,
        created_at=order.created_at,
        paid_at=order.paid_at,
        completed_at=order.completed_at,
    )


def build_kitchen_output(order: Order) -> KitchenOrderOutput:
    return KitchenOrderOutput(
        id=order.id,
        customer_name=order.customer_name,
        items=build_items(order),
        total_cents=order.total_cents,
        status=order.status,
        payment_status=order.payment_status,
        observation=order.observation,
        created_at=order.created_at,
        paid_at=order.paid_at,
    )


def build_poll_response(outcome: ReconciliationOutcome) -> PaymentPollResponse:
    return PaymentPollResponse(
        order_id=outcome.order_id,
        payment_id=outcome.payment_id,
        status=outcome.status,
        order_status=outcome.order_status,
        payment_status=outcome.payment_status,
        reason=outcome.reason,
        message=outcome.message,
        processing=outcome.processing,
    )
