"""Pytest fixtures for the storefront tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_access_token
from catalog import Catalog
from database import ensure_indexes, get_db
from order_status import StatusLifecycle
from order_store import OrderStore
from orders import OrderBuilder
from reviews import ReviewService
from schemas import OrderItemIn, Product, ShippingAddress

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """In-memory MongoDB with the production indexes."""
    database = mongomock.MongoClient().storefront
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(db):
    return Catalog(db)


@pytest.fixture
def store(db):
    return OrderStore(db, clock=lambda: FIXED_NOW)


@pytest.fixture
def builder(catalog, store):
    return OrderBuilder(catalog, store)


@pytest.fixture
def lifecycle(catalog, store):
    return StatusLifecycle(catalog, store)


@pytest.fixture
def review_service(db, catalog, store):
    return ReviewService(db, catalog, store)


@pytest.fixture
def make_product(db):
    """Insert a product and return its id as a string."""

    def _make(name="Linen Shirt", price=25.0, stock=10, **extra):
        doc = Product(
            name=name,
            price=price,
            stock=stock,
            images=[{"url": f"https://img.example/{name.lower().replace(' ', '-')}.jpg"}],
            **extra,
        ).model_dump()
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


def stock_of(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


@pytest.fixture
def address():
    return ShippingAddress(
        full_name="Jordan Lee",
        phone="555-0100",
        address_line1="12 Harbor St",
        city="Portland",
        state="OR",
        postal_code="97201",
    )


def line(product_id, quantity=1, **kwargs):
    return OrderItemIn(product=product_id, quantity=quantity, **kwargs)


@pytest.fixture
def users(db):
    """Two customers and an admin, keyed by role name."""
    ids = {}
    for key, role in (("alice", "customer"), ("bob", "customer"), ("admin", "admin")):
        ids[key] = str(db["user"].insert_one({"name": key.title(), "email": f"{key}@example.com", "role": role}).inserted_id)
    return ids


@pytest.fixture
def headers(users):
    return {key: {"Authorization": f"Bearer {create_access_token({'sub': uid})}"} for key, uid in users.items()}


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


ADDRESS_BODY = {
    "fullName": "Jordan Lee",
    "phone": "555-0100",
    "addressLine1": "12 Harbor St",
    "city": "Portland",
    "state": "OR",
    "postalCode": "97201",
}
