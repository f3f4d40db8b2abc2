"""
FastAPI dependencies shared by the kiosk routers.

Usage:
    @router.get("/orders/{order_id}")
    def get_order(
        order_id: str,
        store_id: str = Depends(get_store_id),
        db: Session = Depends(get_db),
    ):
        ...
"""

from fastapi import Depends, Header, Query
from sqlalchemy.orm import sessionmaker

from shared.config.constants import Limits
from shared.infrastructure.db import get_session_factory
from shared.utils.exceptions import MissingStoreError, ValidationError
from rest_api.services.payments.cache import PaymentCache, get_payment_cache
from rest_api.services.payments.credentials import GatewayFactory, get_gateway_factory
from rest_api.services.payments.reconciliation import ReconciliationEngine


def get_store_id(
    x_store_id: str | None = Header(default=None, alias="X-Store-Id"),
    store_id: str | None = Query(default=None, alias="storeId"),
) -> str:
    """Tenant selector: X-Store-Id header, else the storeId query parameter."""
    value = (x_store_id or store_id or "").strip()
    if not value:
        raise MissingStoreError()
    if len(value) > Limits.MAX_STORE_ID_LENGTH:
        raise ValidationError("Store id too long", store_id=value[:16])
    return value


def get_optional_store_id(
    x_store_id: str | None = Header(default=None, alias="X-Store-Id"),
    store_id: str | None = Query(default=None, alias="storeId"),
) -> str | None:
    """Store hint for gateway notifications, which may arrive without one."""
    value = (x_store_id or store_id or "").strip()
    return value or None


def get_reconciliation_engine(
    session_factory: sessionmaker = Depends(get_session_factory),
    gateways: GatewayFactory = Depends(get_gateway_factory),
    cache: PaymentCache = Depends(get_payment_cache),
) -> ReconciliationEngine:
    return ReconciliationEngine(session_factory, gateways, cache)
