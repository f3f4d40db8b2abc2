"""
Order routers - /api/orders/*
Client-facing order creation, reads, payment polling and cancellation.
"""

from .routes import router

__all__ = ["router"]
