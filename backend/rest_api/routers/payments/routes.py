"""
Payment router.
Creates PIX and card-terminal intents for pending orders, reports status
by gateway id, cancels intents and clears the terminal queue.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from shared.config.constants import GatewayStatus, PaymentMethod, reason_message
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.rate_limit import limiter
from shared.utils.schemas import (
    CancelPaymentResponse,
    CardIntentResponse,
    ClearQueueResponse,
    CreateCardRequest,
    CreatePixRequest,
    PaymentStatusResponse,
    PixIntentResponse,
)
from rest_api.routers._common import get_reconciliation_engine, get_store_id, to_http_error
from rest_api.repositories import OrderRepository
from rest_api.services.domain.order_service import (
    InvalidOrderState,
    OrderNotFound,
    OrderService,
)
from rest_api.services.payments.credentials import GatewayFactory, get_gateway_factory
from rest_api.services.payments.gateway import GatewayError
from rest_api.services.payments.reconciliation import ReconciliationEngine


router = APIRouter(prefix="/api/payment", tags=["payments"])


def _attach_or_cancel(
    service: OrderService,
    order,
    payment_id: str,
    method: str,
    store_id: str,
    engine: ReconciliationEngine,
    background_tasks: BackgroundTasks,
) -> None:
    """
    Attach a freshly created intent. If the order stopped being payable while
    the gateway call was in flight, the orphan intent is cancelled in the
    background and 409 is returned.
    """
    try:
        service.attach_payment(order, payment_id, method)
    except InvalidOrderState as e:
        logger.warning(
            "Order left pending during intent creation, cancelling intent",
            order_id=order.id,
            payment_id=payment_id,
        )
        background_tasks.add_task(engine.cancel_at_gateway, store_id, payment_id, method)
        raise to_http_error(e, tenant_id=store_id) from e


@router.post("/create-pix", response_model=PixIntentResponse)
@limiter.limit(settings.payment_rate_limit)
async def create_pix(
    request: Request,
    body: CreatePixRequest,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(get_gateway_factory),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> PixIntentResponse:
    """
    Create a PIX charge for a pending order.

    Returns the QR image (base64 PNG) and the copy-paste code. Repeating
    the call for the same order reuses the gateway's idempotency key.
    """
    service = OrderService(db)
    try:
        order = service.require_payable(store_id, body.order_id)
        gateway = gateways.for_tenant(db, store_id)
        intent = await gateway.create_pix_intent(
            amount_cents=order.total_cents,
            order_ref=order.id,
            payer_email=body.payer_email,
        )
    except (OrderNotFound, InvalidOrderState, GatewayError) as e:
        raise to_http_error(e, tenant_id=store_id, order_id=body.order_id) from e

    _attach_or_cancel(
        service, order, intent.intent_id, PaymentMethod.PIX, store_id, engine, background_tasks
    )

    return PixIntentResponse(
        order_id=order.id,
        payment_id=intent.intent_id,
        status=GatewayStatus.PENDING,
        qr_code=intent.qr_text,
        qr_code_base64=intent.qr_image,
        ticket_url=intent.ticket_url,
    )


@router.post("/create-card", response_model=CardIntentResponse)
@limiter.limit(settings.payment_rate_limit)
async def create_card(
    request: Request,
    body: CreateCardRequest,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(get_gateway_factory),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> CardIntentResponse:
    """
    Queue a card payment on the store's terminal.

    Stale intents left on the terminal are removed first, so the customer
    is not shown an old amount. 409 if the terminal is mid-payment.
    """
    service = OrderService(db)
    method = body.method or PaymentMethod.CREDIT
    try:
        order = service.require_payable(store_id, body.order_id)
        gateway = gateways.for_tenant(db, store_id)
        await gateway.clear_pending_queue()
        intent = await gateway.create_card_intent(
            amount_cents=order.total_cents,
            order_ref=order.id,
            method=body.method,
        )
    except (OrderNotFound, InvalidOrderState, GatewayError) as e:
        raise to_http_error(e, tenant_id=store_id, order_id=body.order_id) from e

    _attach_or_cancel(
        service, order, intent.intent_id, method, store_id, engine, background_tasks
    )

    return CardIntentResponse(
        order_id=order.id,
        payment_id=intent.intent_id,
        device_id=intent.device_id,
        status=GatewayStatus.PENDING,
    )


@router.get("/status/{payment_id}", response_model=PaymentStatusResponse)
async def payment_status(
    payment_id: str,
    store_id: str = Depends(get_store_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> PaymentStatusResponse:
    """
    Status by gateway id. For an id attached to one of the store's orders
    the order is reconciled as a side effect; otherwise the gateway's view
    is returned as-is.
    """
    try:
        outcome, observation = await engine.poll_payment(store_id, payment_id)
    except GatewayError as e:
        raise to_http_error(e, tenant_id=store_id, payment_id=payment_id) from e

    if outcome is not None:
        return PaymentStatusResponse(
            payment_id=payment_id,
            order_id=outcome.order_id,
            status=outcome.status,
            reason=outcome.reason,
            message=outcome.message,
            processing=outcome.processing,
        )

    return PaymentStatusResponse(
        payment_id=payment_id,
        order_id=observation.external_reference,
        status=observation.status,
        reason=observation.reason,
        message=reason_message(observation.reason),
        processing=observation.raw_status == "FINISHED",
    )


@router.delete("/cancel/{payment_id}", response_model=CancelPaymentResponse)
async def cancel_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    method: str | None = Query(default=None),
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> CancelPaymentResponse:
    """
    Client cancel by gateway id. When the intent belongs to one of the
    store's orders, the order is cancelled and its stock released right
    away, with the gateway cancel in the background. An unknown id is only
    cancelled at the gateway.
    """
    order = OrderRepository(db).get_by_payment_id(payment_id, store_id)

    if order is None:
        cancelled = await engine.cancel_at_gateway(store_id, payment_id, method)
        return CancelPaymentResponse(
            success=cancelled,
            status=GatewayStatus.CANCELED if cancelled else GatewayStatus.PENDING,
        )

    order_id = order.id
    method = method or order.payment_method
    outcome = await engine.cancel_by_client(store_id, order_id)
    if outcome.transitioned:
        background_tasks.add_task(engine.cancel_at_gateway, store_id, payment_id, method)

    return CancelPaymentResponse(
        success=outcome.transitioned,
        order_id=outcome.order_id,
        status=outcome.status,
        reason=outcome.reason,
        message=outcome.message,
    )


@router.post("/clear-queue", response_model=ClearQueueResponse)
async def clear_queue(
    store_id: str = Depends(get_store_id),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(get_gateway_factory),
) -> ClearQueueResponse:
    """Remove every intent queued on the store's terminal."""
    try:
        gateway = gateways.for_tenant(db, store_id)
    except GatewayError as e:
        raise to_http_error(e, tenant_id=store_id) from e
    cleared = await gateway.clear_pending_queue()
    return ClearQueueResponse(success=True, cleared=cleared)
