"""
Per-store gateway credentials and gateway construction.

Resolution order for a store:
1. The store's own access token (and its own terminal, if any)
2. The deployment defaults from settings, with a warning log
3. Nothing: GatewayUnavailable

A store is never served another store's credentials.
"""

from collections.abc import Callable

import httpx
from sqlalchemy.orm import Session

from shared.config.logging import mask_token, payments_logger as logger
from shared.config.settings import settings
from rest_api.repositories import StoreRepository
from .gateway import GatewayCredentials, GatewayUnavailable, MercadoPagoGateway


def default_credentials() -> GatewayCredentials | None:
    """Deployment-wide credentials from settings, if configured."""
    if not settings.mercadopago_access_token:
        return None
    return GatewayCredentials(
        access_token=settings.mercadopago_access_token,
        device_id=settings.mercadopago_device_id or None,
        is_default=True,
    )


def notification_url_for(tenant_id: str) -> str | None:
    """IPN URL carrying the store id so notifications resolve to the right tenant."""
    if not settings.notification_base_url:
        return None
    base = settings.notification_base_url.rstrip("/")
    return f"{base}/api/notifications/mercadopago?storeId={tenant_id}"


class CredentialResolver:
    """Looks up gateway credentials by store id."""

    def __init__(
        self,
        db: Session,
        defaults: Callable[[], GatewayCredentials | None] = default_credentials,
    ):
        self._stores = StoreRepository(db)
        self._defaults = defaults

    def resolve(self, tenant_id: str | None) -> GatewayCredentials:
        store = self._stores.get(tenant_id) if tenant_id else None

        if store is not None and store.mp_access_token:
            return GatewayCredentials(
                access_token=store.mp_access_token,
                device_id=store.mp_device_id,
                tenant_id=store.id,
            )

        fallback = self._defaults()
        if fallback is None:
            logger.error("No gateway credentials available", tenant_id=tenant_id)
            raise GatewayUnavailable("no credentials configured for store")

        logger.warning(
            "Store has no gateway credentials, using deployment defaults",
            tenant_id=tenant_id,
            token=mask_token(fallback.access_token),
        )
        device_id = fallback.device_id
        if store is not None and store.mp_device_id:
            device_id = store.mp_device_id
        return GatewayCredentials(
            access_token=fallback.access_token,
            device_id=device_id,
            tenant_id=tenant_id,
            is_default=True,
        )


class GatewayFactory:
    """
    Builds a MercadoPagoGateway for a store.

    Injected into the reconciliation engine and the payment routes so tests
    can swap in a factory bound to an httpx.MockTransport client, or one
    returning a fake gateway.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def for_credentials(self, credentials: GatewayCredentials) -> MercadoPagoGateway:
        return MercadoPagoGateway(
            credentials,
            client=self._client,
            notification_url=notification_url_for(credentials.tenant_id) if credentials.tenant_id else None,
        )

    def for_tenant(self, db: Session, tenant_id: str | None) -> MercadoPagoGateway:
        return self.for_credentials(CredentialResolver(db).resolve(tenant_id))


_gateway_factory = GatewayFactory()


def get_gateway_factory() -> GatewayFactory:
    """FastAPI dependency for the gateway factory."""
    return _gateway_factory
