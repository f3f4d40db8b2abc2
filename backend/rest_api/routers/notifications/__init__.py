"""
Notification routers - gateway webhooks and IPN.
"""

from .routes import router

__all__ = ["router"]
