"""
Demo data for development.
Creates one store with a small catalog; idempotent.
"""

from sqlalchemy.orm import Session

from shared.config.logging import get_logger
from rest_api.models import Product, Store

logger = get_logger(__name__)


DEMO_STORE_ID = "demo"

# (name, category, price_cents, stock); stock None = unlimited
DEMO_PRODUCTS = [
    ("Cheeseburger", "Burgers", 2890, 40),
    ("Double Bacon Burger", "Burgers", 3490, 25),
    ("Veggie Burger", "Burgers", 2790, 15),
    ("French Fries", "Sides", 1290, None),
    ("Onion Rings", "Sides", 1490, 30),
    ("Cola 350ml", "Drinks", 690, 120),
    ("Orange Juice", "Drinks", 990, 20),
    ("Brownie", "Desserts", 1190, 12),
]


def seed_demo(
    db: Session,
    store_id: str = DEMO_STORE_ID,
    access_token: str | None = None,
    device_id: str | None = None,
) -> Store:
    """Create the demo store and catalog unless the store already exists."""
    store = db.get(Store, store_id)
    if store is not None:
        logger.info("Demo store already seeded, skipping", store_id=store_id)
        return store

    store = Store(
        id=store_id,
        name="Demo Burger Kiosk",
        mp_access_token=access_token,
        mp_device_id=device_id,
    )
    db.add(store)
    db.flush()

    for name, category, price_cents, stock in DEMO_PRODUCTS:
        db.add(Product(
            tenant_id=store_id,
            name=name,
            category=category,
            price_cents=price_cents,
            stock=stock,
        ))
    db.commit()

    logger.info("Demo store seeded", store_id=store_id, products=len(DEMO_PRODUCTS))
    return store
