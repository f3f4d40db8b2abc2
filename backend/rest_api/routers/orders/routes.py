"""
Order router.
Creates orders (reserving stock), serves reads and the client polling
trigger, and handles client cancellation.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.orm import Session

from shared.config.logging import orders_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.rate_limit import limiter
from shared.utils.exceptions import InternalError
from shared.utils.schemas import (
    CancelPaymentResponse,
    CreateOrderRequest,
    OrderOutput,
    PaymentPollResponse,
)
from rest_api.routers._common import (
    build_order_output,
    build_poll_response,
    get_reconciliation_engine,
    get_store_id,
    to_http_error,
)
from rest_api.services.domain.inventory_ledger import InsufficientStock, ProductNotFound
from rest_api.services.domain.order_service import OrderNotFound, OrderService, StoreNotFound
from rest_api.services.payments.reconciliation import ReconciliationEngine


router = APIRouter(prefix="/api", tags=["orders"])


@router.post("/orders", response_model=OrderOutput, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.order_rate_limit)
def create_order(
    request: Request,
    body: CreateOrderRequest,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> OrderOutput:
    """
    Create an order awaiting payment.

    Stock for every line is reserved in the same transaction; if any line
    cannot be reserved nothing is written and 409 is returned with the
    available quantity.
    """
    service = OrderService(db)
    try:
        order = service.create_order(
            tenant_id=store_id,
            customer_name=body.customer_name,
            customer_id=body.customer_id,
            items=[(item.product_id, item.quantity) for item in body.items],
            observation=body.observation,
        )
    except (InsufficientStock, ProductNotFound, StoreNotFound) as e:
        raise to_http_error(e, tenant_id=store_id) from e
    except Exception as e:
        logger.error("Failed to create order", tenant_id=store_id, error=str(e), exc_info=True)
        raise InternalError("Failed to create order", tenant_id=store_id) from e

    return build_order_output(order)


@router.get("/orders/{order_id}", response_model=OrderOutput)
def get_order(
    order_id: str,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> OrderOutput:
    try:
        order = OrderService(db).get_order(store_id, order_id)
    except OrderNotFound as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return build_order_output(order)


@router.get("/orders/{order_id}/payment", response_model=PaymentPollResponse)
async def poll_order_payment(
    order_id: str,
    store_id: str = Depends(get_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> PaymentPollResponse:
    """
    Client polling trigger.

    Reads the gateway for a pending order and applies the result. A
    gateway outage is reported as pending with processing=true, never as
    an error.
    """
    try:
        outcome = await engine.poll(store_id, order_id)
    except OrderNotFound as e:
        raise to_http_error(e, tenant_id=store_id) from e
    return build_poll_response(outcome)


@router.post("/orders/{order_id}/cancel", response_model=CancelPaymentResponse)
async def cancel_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(get_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> CancelPaymentResponse:
    """
    Client cancel. The order is cancelled and its stock released right away;
    cancelling the intent at the gateway happens in the background.
    """
    try:
        outcome = await engine.cancel_by_client(store_id, order_id)
    except OrderNotFound as e:
        raise to_http_error(e, tenant_id=store_id) from e

    if outcome.transitioned and outcome.payment_id:
        background_tasks.add_task(
            engine.cancel_at_gateway, store_id, outcome.payment_id, outcome.payment_method
        )

    return CancelPaymentResponse(
        success=outcome.transitioned,
        order_id=outcome.order_id,
        status=outcome.status,
        reason=outcome.reason,
        message=outcome.message,
    )


@router.get("/user-orders", response_model=list[OrderOutput])
def list_user_orders(
    customer_id: str = Query(min_length=1, max_length=100),
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
) -> list[OrderOutput]:
    """A customer's orders at this store, newest first."""
    orders = OrderService(db).list_customer_orders(store_id, customer_id)
    return [build_order_output(o) for o in orders]
