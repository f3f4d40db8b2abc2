"""
Product Repository - read access to the catalog.

Stock counters are not written here; only
rest_api.services.domain.inventory_ledger.InventoryLedger mutates them.
"""

from typing import Sequence

from sqlalchemy import Select, select

from rest_api.models import Product
from .base import BaseRepository


class ProductRepository(BaseRepository[Product]):
    """Repository for Product entities."""

    @property
    def model(self) -> type[Product]:
        return Product

    def _base_query(self, tenant_id: str) -> Select:
        return select(Product).where(Product.tenant_id == tenant_id)

    def list_for_store(self, tenant_id: str) -> Sequence[Product]:
        """Catalog for a store, grouped by category then name."""
        query = self._base_query(tenant_id).order_by(Product.category, Product.name)
        return self._db.execute(query).scalars().all()

    def by_id_map(self, product_ids: list[int], tenant_id: str) -> dict[int, Product]:
        """Products keyed by id; ids from other stores are simply absent."""
        return {p.id: p for p in self.find_by_ids(product_ids, tenant_id)}
