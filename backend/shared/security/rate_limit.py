"""
Rate limiting utilities using slowapi.
Protects order creation and payment-intent endpoints from kiosk retry storms.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shared.config.logging import get_logger

logger = get_logger(__name__)


def store_and_address_key(request: Request) -> str:
    """Rate-limit key: store id (when present) plus client address."""
    store_id = request.headers.get("X-Store-Id") or request.query_params.get("storeId")
    address = get_remote_address(request)
    if store_id:
        return f"{store_id}:{address}"
    return address


# Create limiter instance keyed by store + client IP
limiter = Limiter(key_func=store_and_address_key)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Custom handler for rate limit exceeded errors.
    Returns a JSON response with retry information.
    """
    logger.warning(
        "Rate limit exceeded",
        path=request.url.path,
        key=store_and_address_key(request),
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Try again later.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": "60"},
    )
