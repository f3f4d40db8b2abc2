"""
Store Repository - tenant lookup and credential storage.
"""

from sqlalchemy.orm import Session

from rest_api.models import Store


class StoreRepository:
    """Stores are the tenant root, so lookups are by primary key only."""

    def __init__(self, db: Session):
        self._db = db

    def get(self, store_id: str) -> Store | None:
        return self._db.get(Store, store_id)

    def exists(self, store_id: str) -> bool:
        return self.get(store_id) is not None
