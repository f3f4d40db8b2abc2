"""
Inventory Ledger.

Owns Product.stock and Product.stock_reserved. Every mutation is a single
conditional UPDATE so two kiosks racing for the last unit can never both
win: the row either satisfies the guard at write time or is left untouched.

Operations run inside the caller's transaction and never commit. Whether a
confirm or release is applied at most once per order is decided by the
caller (the reconciliation engine's compare-and-swap on the order).
"""

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from shared.config.logging import get_logger
from rest_api.models import Product

logger = get_logger(__name__)


class ProductNotFound(Exception):
    """Product does not exist in this store."""

    def __init__(self, product_id: int, tenant_id: str):
        self.product_id = product_id
        self.tenant_id = tenant_id
        super().__init__(f"Product {product_id} not found in store {tenant_id}")


class InsufficientStock(Exception):
    """Requested quantity exceeds stock - stock_reserved."""

    def __init__(self, product_id: int, available: int, requested: int, product_name: str | None = None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.product_name = product_name
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available={available}, requested={requested}"
        )


def aggregate_lines(lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    """Sum quantities per product so repeated lines are reserved as one."""
    totals: dict[int, int] = defaultdict(int)
    for product_id, quantity in lines:
        totals[product_id] += quantity
    return dict(totals)


class InventoryLedger:
    """Reserve / confirm / release stock for a store's products."""

    def __init__(self, db: Session):
        self._db = db

    def available(self, tenant_id: str, product_id: int) -> int | None:
        """Units still reservable; None for unlimited stock."""
        row = self._db.execute(
            select(Product.stock, Product.stock_reserved).where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
            )
        ).one_or_none()
        if row is None:
            raise ProductNotFound(product_id, tenant_id)
        stock, reserved = row
        if stock is None:
            return None
        return max(stock - reserved, 0)

    def reserve(self, tenant_id: str, product_id: int, quantity: int) -> bool:
        """
        Hold `quantity` units for a pending order.

        Returns True when units were reserved, False for unlimited-stock
        products (nothing to hold). Raises InsufficientStock and changes
        nothing when stock - stock_reserved < quantity.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        result = self._db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.stock.is_not(None),
                Product.stock - Product.stock_reserved >= quantity,
            )
            .values(stock_reserved=Product.stock_reserved + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.debug("Stock reserved", tenant_id=tenant_id, product_id=product_id, quantity=quantity)
            return True

        row = self._db.execute(
            select(Product.stock, Product.stock_reserved, Product.name).where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
            )
        ).one_or_none()
        if row is None:
            raise ProductNotFound(product_id, tenant_id)

        stock, reserved, name = row
        if stock is None:
            return False

        available = max(stock - reserved, 0)
        logger.info(
            "Reservation refused",
            tenant_id=tenant_id,
            product_id=product_id,
            available=available,
            requested=quantity,
        )
        raise InsufficientStock(product_id, available, quantity, product_name=name)

    def confirm(self, tenant_id: str, product_id: int, quantity: int) -> None:
        """Convert a reservation into a sale: stock and reserved both drop, floored at 0."""
        self._db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.stock.is_not(None),
            )
            .values(
                stock=case(
                    (Product.stock >= quantity, Product.stock - quantity),
                    else_=0,
                ),
                stock_reserved=case(
                    (Product.stock_reserved >= quantity, Product.stock_reserved - quantity),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )

    def release(self, tenant_id: str, product_id: int, quantity: int) -> None:
        """Give reserved units back: reserved drops, floored at 0."""
        self._db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.stock.is_not(None),
            )
            .values(
                stock_reserved=case(
                    (Product.stock_reserved >= quantity, Product.stock_reserved - quantity),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )

    # =========================================================================
    # Whole-order helpers
    # =========================================================================

    def reserve_lines(self, tenant_id: str, lines: Iterable[tuple[int, int]]) -> None:
        """Reserve every (product_id, quantity) line or raise on the first shortfall."""
        for product_id, quantity in sorted(aggregate_lines(lines).items()):
            self.reserve(tenant_id, product_id, quantity)

    def confirm_lines(self, tenant_id: str, lines: Iterable[tuple[int, int]]) -> None:
        for product_id, quantity in sorted(aggregate_lines(lines).items()):
            self.confirm(tenant_id, product_id, quantity)

    def release_lines(self, tenant_id: str, lines: Iterable[tuple[int, int]]) -> None:
        for product_id, quantity in sorted(aggregate_lines(lines).items()):
            self.release(tenant_id, product_id, quantity)
