"""Pytest fixtures for storefront tests."""

from datetime import timedelta
from decimal import Decimal

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import issue_token, register_user
from cart import add_to_cart
from catalog import create_product, get_product
from coupons import create_coupon
from database import ensure_indexes, get_db, utcnow
from schemas import Product, ShippingDetails


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database with indexes."""
    client = mongomock.MongoClient()
    database = client["storefront_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def customer(db):
    return register_user(db, "Alice", "alice@example.com", "secret123")


@pytest.fixture
def other_customer(db):
    return register_user(db, "Bob", "bob@example.com", "secret123")


@pytest.fixture
def admin(db):
    return register_user(db, "Admin", "admin@shop.com", "admin123", is_admin=True)


@pytest.fixture
def make_product(db):
    """Create a product and return its id."""

    def _make(name="Widget", price="10.00", stock=10, **extra):
        return create_product(db, Product(name=name, price=Decimal(price), stock=stock, **extra))

    return _make


@pytest.fixture
def make_coupon(db):
    """Create a coupon that expires in a week unless told otherwise."""

    def _make(code="SAVE10", discount_type="Percentage", discount_value="10", **extra):
        data = {
            "code": code,
            "discount_type": discount_type,
            "discount_value": Decimal(discount_value),
            "expiry_date": utcnow() + timedelta(days=7),
        }
        data.update(extra)
        return create_coupon(db, data)

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return get_product(db, product_id)["stock"]

    return _stock


@pytest.fixture
def fill_cart(db):
    def _fill(user, *lines):
        for product_id, quantity in lines:
            add_to_cart(db, user["id"], product_id, quantity)

    return _fill


@pytest.fixture
def shipping():
    return ShippingDetails(
        shipping_address="12 Market Street",
        city="Hyderabad",
        pin_code="500001",
        phone_number="9876543210",
    )


@pytest.fixture
def client(db):
    """Test client wired to the in-memory database."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}

    return _headers
