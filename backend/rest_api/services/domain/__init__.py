"""
Domain services.

Each service takes a SQLAlchemy Session and raises plain domain
exceptions; routers translate them into HTTP errors.
"""

from .inventory_ledger import InsufficientStock, InventoryLedger, ProductNotFound
from .kitchen_service import KitchenService
from .order_service import (
    InvalidOrderState,
    OrderNotFound,
    OrderService,
    StoreNotFound,
)

__all__ = [
    "InventoryLedger",
    "InsufficientStock",
    "ProductNotFound",
    "OrderService",
    "OrderNotFound",
    "InvalidOrderState",
    "StoreNotFound",
    "KitchenService",
]
