"""
Payment processing: Mercado Pago adapter, per-store credentials,
reconciliation of payment signals and the ephemeral payment cache.
"""

from .cache import InMemoryPaymentCache, PaymentCache, RedisPaymentCache, get_payment_cache
from .circuit_breaker import CircuitBreaker, CircuitBreakerError, mercadopago_breaker
from .credentials import CredentialResolver, GatewayFactory, get_gateway_factory
from .gateway import (
    AmbiguousGatewayState,
    GatewayConflict,
    GatewayCredentials,
    GatewayError,
    GatewayRequestError,
    GatewayUnavailable,
    MercadoPagoGateway,
    PaymentObservation,
)
from .reconciliation import (
    DoubleTransitionAttempt,
    ReconciliationEngine,
    ReconciliationOutcome,
)

__all__ = [
    "PaymentCache",
    "InMemoryPaymentCache",
    "RedisPaymentCache",
    "get_payment_cache",
    "CircuitBreaker",
    "CircuitBreakerError",
    "mercadopago_breaker",
    "CredentialResolver",
    "GatewayFactory",
    "get_gateway_factory",
    "MercadoPagoGateway",
    "GatewayCredentials",
    "PaymentObservation",
    "GatewayError",
    "GatewayUnavailable",
    "GatewayRequestError",
    "GatewayConflict",
    "AmbiguousGatewayState",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "DoubleTransitionAttempt",
]
