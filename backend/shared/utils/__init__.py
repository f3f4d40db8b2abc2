"""
Utilities module: Exceptions, schemas, polling.
"""

from shared.utils.exceptions import (
    NotFoundError,
    ValidationError,
    ConflictError,
    InsufficientStockError,
    ExternalServiceError,
)
from shared.utils.polling import poll_until, PollResult
from shared.utils.schemas import ErrorResponse

__all__ = [
    # exceptions
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "InsufficientStockError",
    "ExternalServiceError",
    # polling
    "poll_until",
    "PollResult",
    # schemas
    "ErrorResponse",
]
