"""
Centralized HTTP exceptions for consistent error handling.

Domain services raise plain domain exceptions (InsufficientStock,
GatewayUnavailable, ...); routers translate them into the classes below.

Usage:
    from shared.utils.exceptions import NotFoundError, ValidationError

    raise NotFoundError("Order", order_id)
    raise ValidationError("Order has no items")
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    def __init__(
        self,
        status_code: int,
        detail: Any,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(str(detail), status_code=status_code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


# =============================================================================
# 404 Not Found Errors
# =============================================================================


class NotFoundError(AppException):
    """
    Entity not found error (404).

    Usage:
        raise NotFoundError("Product", 123)
        raise NotFoundError("Order", order_id, tenant_id=tenant_id)
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} with ID {entity_id} not found"
        else:
            detail = f"{entity} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="warning",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


class OrderNotFoundError(NotFoundError):
    """Order not found for the current store."""

    def __init__(self, order_id: str | None = None, **log_context: Any):
        super().__init__("Order", order_id, **log_context)


# =============================================================================
# 400 Bad Request Errors
# =============================================================================


class ValidationError(AppException):
    """
    Input validation error (400).

    Usage:
        raise ValidationError("Quantity must be positive", field="quantity", value=-1)
    """

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class MissingStoreError(ValidationError):
    """Request did not say which store it belongs to."""

    def __init__(self, **log_context: Any):
        super().__init__("Missing store id (X-Store-Id header or storeId query)", **log_context)


# =============================================================================
# 409 Conflict Errors
# =============================================================================


class ConflictError(AppException):
    """
    Resource conflict error (409).

    Usage:
        raise ConflictError("Order is already paid")
    """

    def __init__(self, detail: Any, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class InvalidStateError(ConflictError):
    """Entity is in an invalid state for the operation."""

    def __init__(
        self,
        entity: str,
        current_state: str,
        expected_states: list[str] | None = None,
        **log_context: Any,
    ):
        if expected_states:
            states_str = ", ".join(expected_states)
            detail = f"{entity} is '{current_state}', expected one of: {states_str}"
        else:
            detail = f"{entity} cannot be '{current_state}' for this operation"

        super().__init__(detail, entity=entity, current_state=current_state, **log_context)


class InsufficientStockError(ConflictError):
    """Requested quantity exceeds available stock (stock - reserved)."""

    def __init__(
        self,
        product_id: int,
        product_name: str | None,
        available: int,
        requested: int,
        **log_context: Any,
    ):
        detail = {
            "error": "insufficient_stock",
            "message": f"Insufficient stock for {product_name or product_id}",
            "product_id": product_id,
            "available": available,
            "requested": requested,
        }
        super().__init__(detail, product_id=product_id, **log_context)


# =============================================================================
# 5xx Errors
# =============================================================================


class InternalError(AppException):
    """
    Internal server error (500).

    Usage:
        raise InternalError("Failed to create order", order_id=order_id)
    """

    def __init__(self, detail: str = "Internal server error", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            log_level="error",
            **log_context,
        )


class ExternalServiceError(AppException):
    """External service error (502 or 503)."""

    def __init__(
        self,
        service: str,
        is_unavailable: bool = False,
        retry_after: int | None = None,
        reason: str | None = None,
        **log_context: Any,
    ):
        if is_unavailable:
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            detail = f"{service} temporarily unavailable"
        else:
            status_code = status.HTTP_502_BAD_GATEWAY
            detail = f"Error communicating with {service}"
        if reason:
            detail = f"{detail}: {reason}"

        headers = None
        if retry_after:
            headers = {"Retry-After": str(retry_after)}

        super().__init__(
            status_code=status_code,
            detail=detail,
            log_level="error",
            headers=headers,
            service=service,
            **log_context,
        )
