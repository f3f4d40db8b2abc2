"""
Shared Pydantic schemas used across the application.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config.constants import Limits


# =============================================================================
# Common Types
# =============================================================================

OrderStatus = Literal["pending_payment", "active", "preparing", "completed", "canceled"]
OrderPaymentStatus = Literal["pending", "paid", "authorized", "canceled", "rejected"]
PaymentMethod = Literal["pix", "debit", "credit"]
CardMethod = Literal["debit", "credit"]
ObservedStatus = Literal["pending", "approved", "rejected", "canceled"]


# =============================================================================
# Order Schemas
# =============================================================================


class OrderItemInput(BaseModel):
    """A single line in a new order. Prices are always taken from the catalog."""

    product_id: int
    quantity: int = Field(ge=Limits.MIN_QUANTITY, le=Limits.MAX_QUANTITY)


class CreateOrderRequest(BaseModel):
    """Request to create an order and reserve its stock."""

    customer_id: str | None = Field(default=None, max_length=100)
    customer_name: str = Field(min_length=1, max_length=Limits.MAX_NAME_LENGTH)
    items: list[OrderItemInput] = Field(min_length=1, max_length=Limits.MAX_ITEMS_PER_ORDER)
    observation: str | None = Field(default=None, max_length=Limits.MAX_OBSERVATION_LENGTH)


class OrderItemOutput(BaseModel):
    """Output for a single order line."""

    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int


class OrderOutput(BaseModel):
    """Output for an order with its items."""

    id: str
    store_id: str
    customer_id: str | None = None
    customer_name: str
    items: list[OrderItemOutput]
    total_cents: int
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: PaymentMethod | None = None
    payment_id: str | None = None
    payment_reason: str | None = None
    payment_message: str | None = None
    observation: str | None = None
    created_at: datetime
    paid_at: datetime | None = None
    completed_at: datetime | None = None


class PaymentPollResponse(BaseModel):
    """
    Result of a client poll on an order's payment.

    `status` is the four-state view the kiosk screen switches on;
    `processing` is true while the gateway was unreachable or ambiguous.
    """

    order_id: str
    payment_id: str | None = None
    status: ObservedStatus
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    reason: str | None = None
    message: str | None = None
    processing: bool = False


# =============================================================================
# Payment Schemas
# =============================================================================


class CreatePixRequest(BaseModel):
    """Request to create a PIX intent for an existing order."""

    order_id: str
    payer_email: str | None = Field(default=None, max_length=200)


class PixIntentResponse(BaseModel):
    """PIX intent: QR image (base64 PNG) and copy-paste text."""

    order_id: str
    payment_id: str
    status: ObservedStatus = "pending"
    qr_code: str | None = None
    qr_code_base64: str | None = None
    ticket_url: str | None = None


class CreateCardRequest(BaseModel):
    """Request to send a card intent to the store's terminal."""

    order_id: str
    method: CardMethod | None = None


class CardIntentResponse(BaseModel):
    """Card intent queued on the terminal."""

    order_id: str
    payment_id: str
    device_id: str
    status: ObservedStatus = "pending"


class PaymentStatusResponse(BaseModel):
    """Status of a gateway intent as seen by the kiosk."""

    payment_id: str
    order_id: str | None = None
    status: ObservedStatus
    reason: str | None = None
    message: str | None = None
    processing: bool = False


class CancelPaymentResponse(BaseModel):
    """Outcome of a client cancel."""

    success: bool
    order_id: str | None = None
    status: ObservedStatus
    reason: str | None = None
    message: str | None = None


class ClearQueueResponse(BaseModel):
    """Number of queued terminal intents removed."""

    success: bool = True
    cleared: int


class PointDeviceResponse(BaseModel):
    """Terminal device information."""

    device_id: str
    operating_mode: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Kitchen Schemas
# =============================================================================


class KitchenOrderOutput(BaseModel):
    """An order as displayed on the kitchen screen."""

    id: str
    customer_name: str
    items: list[OrderItemOutput]
    total_cents: int
    status: OrderStatus
    payment_status: OrderPaymentStatus
    observation: str | None = None
    created_at: datetime
    paid_at: datetime | None = None


class KitchenQueueResponse(BaseModel):
    """Kitchen feed plus the refresh period clients should poll at."""

    orders: list[KitchenOrderOutput]
    poll_interval_seconds: int


# =============================================================================
# Notification Schemas
# =============================================================================


class NotificationAck(BaseModel):
    """Immediate acknowledgement returned to the gateway."""

    received: bool = True


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None
