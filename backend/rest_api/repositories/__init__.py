"""
Repository Pattern implementation.
Centralizes data access with guaranteed eager loading and tenant isolation.

Usage:
    from rest_api.repositories import OrderRepository

    repo = OrderRepository(db)
    order = repo.get("order_ab12", tenant_id="store-1")
    changed = repo.transition(order.id, "pending", payment_status="paid")
"""

from .base import BaseRepository
from .product import ProductRepository
from .order import OrderRepository
from .store import StoreRepository

__all__ = [
    "BaseRepository",
    "ProductRepository",
    "OrderRepository",
    "StoreRepository",
]
