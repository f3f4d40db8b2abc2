"""
HTTP middlewares: security headers and request content-type validation.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config.settings import settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the standard hardening headers to every response (HSTS in production)."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers.pop("server", None)

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class ContentTypeValidationMiddleware(BaseHTTPMiddleware):
    """
    Rejects POST/PUT/PATCH bodies that are not JSON with 415.

    Gateway callbacks are exempt: IPN deliveries may be form-encoded or
    carry no content type at all, and must always be answered with 200.
    """

    METHODS_WITH_BODY = {"POST", "PUT", "PATCH"}
    EXEMPT_PATHS = ("/api/webhooks/", "/api/notifications/", "/api/health")

    async def dispatch(self, request: Request, call_next):
        if request.method in self.METHODS_WITH_BODY and not request.url.path.startswith(self.EXEMPT_PATHS):
            content_type = request.headers.get("content-type", "")
            if content_type and not content_type.startswith("application/json"):
                return JSONResponse(
                    status_code=415,
                    content={"detail": "Unsupported Media Type. Use application/json"},
                )
        return await call_next(request)


def register_middlewares(app: FastAPI) -> None:
    """
    Middlewares run in reverse registration order: content-type
    validation first, then security headers.
    """
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(ContentTypeValidationMiddleware)
