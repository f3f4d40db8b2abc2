"""
SQLAlchemy ORM Models Package.

Models are organized into domain-specific modules:
- base: Base class and TimestampMixin
- store: Store (tenant + gateway credentials)
- catalog: Product (stock / stock_reserved)
- order: Order, OrderItem
"""

from .base import Base, TimestampMixin, utcnow
from .store import Store
from .catalog import Product
from .order import Order, OrderItem

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "Store",
    "Product",
    "Order",
    "OrderItem",
]
