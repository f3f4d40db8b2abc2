"""
Payment routers - /api/payment/* and /api/point/*
Intent creation (PIX and card terminal), status, cancel, terminal admin.
"""

from .routes import router
from .point import router as point_router

__all__ = ["router", "point_router"]
