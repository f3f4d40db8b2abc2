"""
Translation of domain exceptions into HTTP errors.

Services raise plain exceptions; routers call to_http_error() in their
except clauses so every endpoint maps them the same way.
"""

from shared.utils.exceptions import (
    AppException,
    ConflictError,
    ExternalServiceError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from rest_api.services.domain.inventory_ledger import InsufficientStock, ProductNotFound
from rest_api.services.domain.order_service import InvalidOrderState, OrderNotFound, StoreNotFound
from rest_api.services.payments.gateway import (
    GatewayConflict,
    GatewayRequestError,
    GatewayUnavailable,
)

GATEWAY_SERVICE = "Mercado Pago"


def to_http_error(exc: Exception, **log_context) -> AppException:
    """Map a domain exception to the matching AppException."""
    if isinstance(exc, InsufficientStock):
        return InsufficientStockError(
            exc.product_id, exc.product_name, exc.available, exc.requested, **log_context
        )
    if isinstance(exc, ProductNotFound):
        return NotFoundError("Product", exc.product_id, **log_context)
    if isinstance(exc, StoreNotFound):
        return NotFoundError("Store", exc.store_id, **log_context)
    if isinstance(exc, OrderNotFound):
        return OrderNotFoundError(exc.order_id, **log_context)
    if isinstance(exc, InvalidOrderState):
        return InvalidStateError(
            "Order",
            f"{exc.order.status}/{exc.order.payment_status}",
            order_id=exc.order.id,
            **log_context,
        )
    if isinstance(exc, GatewayConflict):
        return ConflictError(
            "Payment is being processed on the terminal and cannot be changed",
            payment_id=exc.intent_id,
            **log_context,
        )
    if isinstance(exc, GatewayUnavailable):
        retry_after = int(exc.retry_after) + 1 if exc.retry_after else None
        return ExternalServiceError(
            GATEWAY_SERVICE,
            is_unavailable=True,
            retry_after=retry_after,
            reason=exc.reason,
            **log_context,
        )
    if isinstance(exc, GatewayRequestError):
        if exc.status_code in (400, 422):
            return ValidationError(f"{GATEWAY_SERVICE}: {exc.message}", **log_context)
        return ExternalServiceError(GATEWAY_SERVICE, reason=exc.message, **log_context)
    raise exc
