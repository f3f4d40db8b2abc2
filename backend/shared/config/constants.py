"""
Centralized constants for the backend application.
Avoid magic strings for order, payment and gateway states.

Usage:
    from shared.config.constants import OrderStatus, PaymentStatus

    if order.payment_status == PaymentStatus.PENDING:
        ...
"""

from typing import Final


# =============================================================================
# Entity Status Constants
# =============================================================================


class OrderStatus:
    """Order fulfilment status constants."""

    PENDING_PAYMENT: Final[str] = "pending_payment"
    ACTIVE: Final[str] = "active"
    PREPARING: Final[str] = "preparing"
    COMPLETED: Final[str] = "completed"
    CANCELED: Final[str] = "canceled"

    ALL: Final[list[str]] = [PENDING_PAYMENT, ACTIVE, PREPARING, COMPLETED, CANCELED]
    KITCHEN_VISIBLE: Final[list[str]] = [ACTIVE, PREPARING]


class PaymentStatus:
    """Persisted order payment status constants."""

    PENDING: Final[str] = "pending"
    PAID: Final[str] = "paid"
    # Legacy value accepted by the kitchen filter, never written
    AUTHORIZED: Final[str] = "authorized"
    CANCELED: Final[str] = "canceled"
    # Read for older rows; rejections are stored as canceled with a rejected_by_* reason
    REJECTED: Final[str] = "rejected"

    ALL: Final[list[str]] = [PENDING, PAID, AUTHORIZED, CANCELED, REJECTED]
    SETTLED: Final[list[str]] = [PAID, AUTHORIZED]
    TERMINAL: Final[list[str]] = [PAID, AUTHORIZED, CANCELED, REJECTED]


class PaymentMethod:
    """Payment method constants."""

    PIX: Final[str] = "pix"
    DEBIT: Final[str] = "debit"
    CREDIT: Final[str] = "credit"

    ALL: Final[list[str]] = [PIX, DEBIT, CREDIT]
    CARD: Final[list[str]] = [DEBIT, CREDIT]


class GatewayStatus:
    """Normalized gateway observation status (four-state enum)."""

    PENDING: Final[str] = "pending"
    APPROVED: Final[str] = "approved"
    REJECTED: Final[str] = "rejected"
    CANCELED: Final[str] = "canceled"

    ALL: Final[list[str]] = [PENDING, APPROVED, REJECTED, CANCELED]
    TERMINAL: Final[list[str]] = [APPROVED, REJECTED, CANCELED]


class CancelReason:
    """Reason codes stored on an order when its payment ends without approval."""

    CANCELED_BY_USER: Final[str] = "canceled_by_user"
    PAYMENT_ERROR: Final[str] = "payment_error"
    CANCELED_BY_SYSTEM: Final[str] = "canceled_by_system"
    REJECTED_BY_TERMINAL: Final[str] = "rejected_by_terminal"
    REJECTED_BY_GATEWAY: Final[str] = "rejected_by_gateway"
    TIMEOUT: Final[str] = "timeout"

    ALL: Final[list[str]] = [
        CANCELED_BY_USER,
        PAYMENT_ERROR,
        CANCELED_BY_SYSTEM,
        REJECTED_BY_TERMINAL,
        REJECTED_BY_GATEWAY,
        TIMEOUT,
    ]
    REJECTIONS: Final[list[str]] = [REJECTED_BY_TERMINAL, REJECTED_BY_GATEWAY]


# User-facing message per reason code
CANCEL_REASON_MESSAGES: Final[dict[str, str]] = {
    CancelReason.CANCELED_BY_USER: "Payment cancelled on the terminal by the customer",
    CancelReason.PAYMENT_ERROR: "The terminal reported a payment error",
    CancelReason.CANCELED_BY_SYSTEM: "Payment cancelled by the payment provider",
    CancelReason.REJECTED_BY_TERMINAL: "Payment rejected by the terminal",
    CancelReason.REJECTED_BY_GATEWAY: "Payment rejected by the payment provider",
    CancelReason.TIMEOUT: "Payment window expired",
}


def reason_message(reason: str | None) -> str | None:
    """Return the user-facing message for a reason code (None if unknown)."""
    if reason is None:
        return None
    return CANCEL_REASON_MESSAGES.get(reason)


# =============================================================================
# Mercado Pago raw states
# =============================================================================


class PointIntentState:
    """States reported by the Point terminal payment-intent resource."""

    OPEN: Final[str] = "OPEN"
    ON_TERMINAL: Final[str] = "ON_TERMINAL"
    PROCESSING: Final[str] = "PROCESSING"
    PROCESSED: Final[str] = "PROCESSED"
    FINISHED: Final[str] = "FINISHED"
    CANCELED: Final[str] = "CANCELED"
    ERROR: Final[str] = "ERROR"
    ABANDONED: Final[str] = "ABANDONED"


class MPPaymentStatus:
    """Statuses reported by the Mercado Pago payments resource."""

    APPROVED: Final[str] = "approved"
    AUTHORIZED: Final[str] = "authorized"
    PENDING: Final[str] = "pending"
    IN_PROCESS: Final[str] = "in_process"
    REJECTED: Final[str] = "rejected"
    CANCELLED: Final[str] = "cancelled"
    REFUNDED: Final[str] = "refunded"
    CHARGED_BACK: Final[str] = "charged_back"

    SUCCESS: Final[list[str]] = [APPROVED, AUTHORIZED]
    VOIDED: Final[list[str]] = [CANCELLED, REFUNDED, CHARGED_BACK]


class NotificationTopic:
    """IPN topics and webhook actions handled by the notification endpoints."""

    POINT_INTENT: Final[str] = "point_integration_ipn"
    PAYMENT: Final[str] = "payment"
    MERCHANT_ORDER: Final[str] = "merchant_order"

    PAYMENT_CREATED: Final[str] = "payment.created"
    PAYMENT_UPDATED: Final[str] = "payment.updated"
    PAYMENT_ACTIONS: Final[list[str]] = [PAYMENT_CREATED, PAYMENT_UPDATED]


# =============================================================================
# Validation Constants
# =============================================================================


class Limits:
    """Validation limits."""

    # Quantity limits
    MIN_QUANTITY: Final[int] = 1
    MAX_QUANTITY: Final[int] = 99

    # Price limits (in cents)
    MIN_PRICE_CENTS: Final[int] = 0
    MAX_PRICE_CENTS: Final[int] = 100_000_00

    # Order limits
    MAX_ITEMS_PER_ORDER: Final[int] = 50

    # String lengths
    MAX_NAME_LENGTH: Final[int] = 200
    MAX_OBSERVATION_LENGTH: Final[int] = 500
    MAX_STORE_ID_LENGTH: Final[int] = 64

