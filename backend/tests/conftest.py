"""
Pytest configuration and fixtures for backend tests.
"""

import itertools
from dataclasses import dataclass, field

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rest_api.main import app
from rest_api.models import Base, Product, Store
from rest_api.routers.notifications import routes as notification_routes
from rest_api.services.payments.cache import InMemoryPaymentCache, get_payment_cache
from rest_api.services.payments.credentials import get_gateway_factory
from rest_api.services.payments.gateway import (
    CardIntent,
    GatewayCredentials,
    GatewayUnavailable,
    PaymentObservation,
    PixIntent,
)
from rest_api.services.payments.reconciliation import ReconciliationEngine
from shared.config.constants import GatewayStatus
from shared.infrastructure.db import get_db, get_session_factory
from shared.security.rate_limit import limiter


_id_counter = itertools.count(1000)


# SQLite in-memory database shared by every session in a test
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def next_id():
    """Unique ids for test intents."""
    return next(_id_counter)


# =============================================================================
# Fake gateway
# =============================================================================


@dataclass
class FakeGateway:
    """
    In-memory stand-in for MercadoPagoGateway.

    Tests set `statuses[intent_id]` to the observation the gateway should
    report; `unavailable=True` makes every call raise GatewayUnavailable.
    """

    device_id: str | None = "DEVICE-1"
    statuses: dict[str, PaymentObservation] = field(default_factory=dict)
    payments: dict[str, PaymentObservation] = field(default_factory=dict)
    by_reference: dict[str, PaymentObservation] = field(default_factory=dict)
    unavailable: bool = False
    cancelled: list[str] = field(default_factory=list)
    created: list[tuple[str, str, int]] = field(default_factory=list)
    queue_clears: int = 0
    status_calls: int = 0
    payment_calls: int = 0
    configured_mode: str | None = None

    @property
    def credentials(self) -> GatewayCredentials:
        return GatewayCredentials(access_token="TEST-token", device_id=self.device_id)

    def _check(self):
        if self.unavailable:
            raise GatewayUnavailable("gateway returned 503")

    async def create_pix_intent(self, amount_cents, order_ref, payer_email=None, description=None):
        self._check()
        intent_id = str(next_id())
        self.created.append(("pix", order_ref, amount_cents))
        return PixIntent(intent_id=intent_id, qr_text="00020126pix", qr_image="aW1hZ2U=", raw_status="pending")

    async def create_card_intent(self, amount_cents, order_ref, device_id=None, method=None, description=None):
        self._check()
        intent_id = f"intent-{next_id()}"
        self.created.append((method or "card", order_ref, amount_cents))
        return CardIntent(intent_id=intent_id, device_id=device_id or self.device_id)

    async def get_status(self, intent_id):
        self._check()
        self.status_calls += 1
        return self.statuses.get(intent_id) or PaymentObservation(status=GatewayStatus.PENDING, intent_id=intent_id)

    async def get_payment(self, payment_id):
        self._check()
        self.payment_calls += 1
        return self.payments.get(payment_id)

    async def search_by_reference(self, external_reference):
        self._check()
        return self.by_reference.get(external_reference)

    async def cancel(self, intent_id, method=None):
        self._check()
        self.cancelled.append(intent_id)
        return True

    async def clear_pending_queue(self, device_id=None, delay=None):
        self.queue_clears += 1
        return 0

    async def get_device(self, device_id=None):
        self._check()
        return {"id": self.device_id, "operating_mode": self.configured_mode or "STANDALONE"}

    async def configure_device(self, device_id=None, mode="PDV"):
        self._check()
        self.configured_mode = mode
        return {"id": self.device_id, "operating_mode": mode}


class FakeGatewayFactory:
    """Returns the same FakeGateway for every store."""

    def __init__(self, gateway: FakeGateway):
        self.gateway = gateway
        self.tenants: list[str | None] = []

    def for_credentials(self, credentials):
        return self.gateway

    def for_tenant(self, db, tenant_id):
        self.tenants.append(tenant_id)
        return self.gateway


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_session():
    """
    Fresh database for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def gateway_factory(fake_gateway):
    return FakeGatewayFactory(fake_gateway)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database."""
    return TestingSessionLocal


@pytest.fixture
def payment_cache():
    return InMemoryPaymentCache(default_ttl=3600)


@pytest.fixture
def reconciliation(db_session, gateway_factory, payment_cache):
    """Reconciliation engine bound to the test database and the fake gateway."""
    return ReconciliationEngine(TestingSessionLocal, gateway_factory, payment_cache)


@pytest.fixture(scope="function")
def client(db_session, gateway_factory, payment_cache, monkeypatch):
    """
    Test client with database, gateway and cache overrides.
    Rate limiting and webhook signature checks are off unless a test
    turns them back on.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_gateway_factory] = lambda: gateway_factory
    app.dependency_overrides[get_payment_cache] = lambda: payment_cache
    monkeypatch.setattr(notification_routes.settings, "mercadopago_webhook_secret", "")
    limiter.enabled = False

    # No context manager: the lifespan would create tables on the configured database
    yield TestClient(app)

    limiter.enabled = True
    app.dependency_overrides.clear()


# =============================================================================
# Seed fixtures
# =============================================================================


@pytest.fixture
def seed_store(db_session):
    store = Store(id="store-1", name="Test Kiosk", mp_access_token="TEST-store-token", mp_device_id="DEVICE-1")
    db_session.add(store)
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def other_store(db_session):
    store = Store(id="store-2", name="Other Kiosk")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture
def seed_products(db_session, seed_store):
    """burger: 10 in stock, soda: 2 in stock, fries: unlimited."""
    products = {
        "burger": Product(tenant_id=seed_store.id, name="Burger", category="Burgers", price_cents=2500, stock=10),
        "soda": Product(tenant_id=seed_store.id, name="Soda", category="Drinks", price_cents=600, stock=2),
        "fries": Product(tenant_id=seed_store.id, name="Fries", category="Sides", price_cents=1200, stock=None),
    }
    db_session.add_all(products.values())
    db_session.commit()
    for product in products.values():
        db_session.refresh(product)
    return products


@pytest.fixture
def store_headers(seed_store):
    return {"X-Store-Id": seed_store.id}


@pytest.fixture
def stock_of(db_session):
    """Returns a reader of (stock, stock_reserved) fresh from the database."""
    def read(product):
        db_session.expire_all()
        fresh = db_session.get(Product, product.id)
        return fresh.stock, fresh.stock_reserved
    return read
