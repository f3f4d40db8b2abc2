"""
CORS configuration.
The kiosk, kitchen display and admin screens run on separate origins.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings


# Development origins (Vite dev servers for kiosk and kitchen screens)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:5174",
    "http://127.0.0.1:3000",
]

ALLOWED_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]

ALLOWED_HEADERS = [
    "Content-Type",
    "X-Store-Id",
    "X-Request-ID",
    "Accept",
    "Accept-Language",
    "Cache-Control",
]


def get_cors_origins() -> list[str]:
    """ALLOWED_ORIGINS (comma-separated) when set, otherwise the dev defaults."""
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def configure_cors(app: FastAPI) -> None:
    # Short preflight cache in development so origin changes apply immediately
    max_age = 0 if settings.environment == "development" else 600

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=False,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=max_age,
    )
