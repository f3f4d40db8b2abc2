"""
REST API main application.
Entry point for the kiosk ordering and payment server.
"""

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from shared.config.settings import settings
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler
from rest_api.core import configure_cors, lifespan, register_middlewares
from rest_api.routers.kitchen import router as kitchen_router
from rest_api.routers.notifications import router as notifications_router
from rest_api.routers.orders import router as orders_router
from rest_api.routers.payments import point_router, router as payments_router
from rest_api.routers.public import health_router


app = FastAPI(
    title="Kiosk REST API",
    description="Self-service ordering kiosk: orders, stock, payments and kitchen feed",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_middlewares(app)
configure_cors(app)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(health_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(point_router)
app.include_router(kitchen_router)
app.include_router(notifications_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rest_api.main:app",
        host="0.0.0.0",
        port=settings.rest_api_port,
        reload=settings.debug,
    )
