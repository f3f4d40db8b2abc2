"""
Request correlation.

Binds two values for the lifetime of a request, including the background
tasks it schedules:
- request id: X-Request-ID header, or a fresh UUID; echoed on the response
- store id: X-Store-Id header or storeId query parameter, when present

CorrelationIdFilter copies both onto every log record, so a webhook
delivery can be followed from acknowledgement to reconciliation.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
store_id_var: ContextVar[str] = ContextVar("store_id", default="")


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def get_store_context() -> str:
    """Store the current request was made for ("" outside a request)."""
    return store_id_var.get()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Sets the request id and store id context for each request and returns
    the request id in the X-Request-ID response header.
    """

    HEADER_NAME = "X-Request-ID"
    STORE_HEADER = "X-Store-Id"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        store_id = request.headers.get(self.STORE_HEADER) or request.query_params.get("storeId") or ""

        request_token = request_id_var.set(request_id)
        store_token = store_id_var.set(store_id.strip()[:64])
        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            store_id_var.reset(store_token)
            request_id_var.reset(request_token)


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds request_id and store_id to log records.

    Usage:
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.store_id = store_id_var.get() or "-"
        return True
