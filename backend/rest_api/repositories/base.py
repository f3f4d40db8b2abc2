"""
Base Repository implementation.
Provides common data access patterns with tenant isolation.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session


ModelT = TypeVar("ModelT")


class BaseRepository(ABC, Generic[ModelT]):
    """
    Abstract base repository with common operations.

    Subclasses must implement:
    - model: the SQLAlchemy model class
    - _base_query(): base query with eager loading, scoped to a tenant
    """

    def __init__(self, db: Session):
        self._db = db

    @property
    @abstractmethod
    def model(self) -> type[ModelT]:
        """Return the SQLAlchemy model class."""
        ...

    @abstractmethod
    def _base_query(self, tenant_id: str) -> Select:
        """Return the tenant-scoped base query with eager loading."""
        ...

    def find_by_ids(self, entity_ids: list[Any], tenant_id: str) -> Sequence[ModelT]:
        """Find entities by IDs within a tenant (order not guaranteed)."""
        if not entity_ids:
            return []
        query = self._base_query(tenant_id).where(self.model.id.in_(entity_ids))
        return self._db.execute(query).scalars().unique().all()

