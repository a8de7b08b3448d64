"""
Shared test fixtures: in-memory SQLite bound to the app's SessionLocal, model
factories, and sync pacing/rate limiting switched off so tests never sleep.
"""
import os

# Must be set before importing wms_sync modules
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["ENABLE_BACKGROUND_WORKERS"] = "false"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-0123456789ab"
os.environ["SHOPIFY_CLIENT_SECRET"] = "test-webhook-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SHOPIFY_API_VERSION"] = "2024-01"

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from wms_sync.config import settings
from wms_sync.database import Base, SessionLocal
from wms_sync.models import (
    Integration,
    IntegrationStatus,
    Inventory,
    Location,
    Product,
    ProductMapping,
)
from wms_sync.services import event_sync, rate_limit
from wms_sync.services.credentials import encrypt_token
from wms_sync.services.rate_limit import MemoryCounterStore, RateLimiter
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.task_queue import side_effects

TEST_SHOP = "test-shop.myshopify.com"
TEST_TOKEN = "shpat_test_token"

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
# Jobs, route handlers and workers open their own sessions through SessionLocal
SessionLocal.configure(bind=test_engine)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=test_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(autouse=True)
def fast_sync(monkeypatch):
    """No pacing delays, a fresh in-memory rate limiter, and clean process-local state."""
    monkeypatch.setattr(settings, "REST_FALLBACK_DELAY_SECONDS", 0)
    monkeypatch.setattr(settings, "PRICE_SYNC_DELAY_SECONDS", 0)
    monkeypatch.setattr(settings, "METAFIELD_SYNC_DELAY_SECONDS", 0)
    monkeypatch.setattr(settings, "INVENTORY_DEBOUNCE_SECONDS", 0)
    monkeypatch.setattr(rate_limit, "_default_limiter", RateLimiter(store=MemoryCounterStore(), sleep=no_sleep))
    monkeypatch.setattr(event_sync, "_scheduler", None)
    yield
    side_effects.failed = []
    side_effects.completed = 0
    side_effects._queue = None
    side_effects._worker = None
    side_effects._loop = None


@pytest.fixture
def shopify_base_url():
    return f"https://{TEST_SHOP}/admin/api/{settings.SHOPIFY_API_VERSION}"


@pytest.fixture
def make_client():
    """Build a ShopifyClient over a respx-backed httpx session."""
    def _make(session, **kwargs):
        return ShopifyClient(TEST_SHOP, TEST_TOKEN, session=session, **kwargs)
    return _make


@pytest.fixture
def make_integration(db_session):
    def _make(**overrides):
        values = {
            "client_id": "client-1",
            "platform": "shopify",
            "shop_domain": TEST_SHOP,
            "access_token": encrypt_token(TEST_TOKEN),
            "status": IntegrationStatus.ACTIVE.value,
            "settings": {"shopify_location_id": "555", "auto_sync_inventory": True},
        }
        values.update(overrides)
        integration = Integration(**values)
        db_session.add(integration)
        db_session.commit()
        return integration
    return _make


@pytest.fixture
def integration(make_integration):
    return make_integration()


@pytest.fixture
def location(db_session):
    loc = Location(name="Main Warehouse")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture
def make_product(db_session):
    def _make(sku="SKU-1", name="Test Product", price=Decimal("19.99"), **overrides):
        product = Product(sku=sku, name=name, price=price, **overrides)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_inventory(db_session):
    def _make(product, location, on_hand=0, reserved=0):
        row = Inventory(product_id=product.id, location_id=location.id, qty_on_hand=on_hand, qty_reserved=reserved)
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture
def make_mapping(db_session):
    def _make(integration, product, **overrides):
        values = {
            "integration_id": integration.id,
            "product_id": product.id,
            "sync_inventory": True,
            "sync_price": False,
            "external_product_id": "7001",
            "external_variant_id": "8001",
            "external_inventory_item_id": "9001",
            "external_sku": product.sku,
        }
        values.update(overrides)
        mapping = ProductMapping(**values)
        db_session.add(mapping)
        db_session.commit()
        return mapping
    return _make
