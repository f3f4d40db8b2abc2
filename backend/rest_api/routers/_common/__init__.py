"""
Common utilities shared across routers.
"""

from .dependencies import (
    get_store_id,
    get_optional_store_id,
    get_reconciliation_engine,
)
from .errors import to_http_error
from .outputs import (
    build_order_output,
    build_kitchen_output,
    build_poll_response,
)

__all__ = [
    "get_store_id",
    "get_optional_store_id",
    "get_reconciliation_engine",
    "to_http_error",
    "build_order_output",
    "build_kitchen_output",
    "build_poll_response",
]
