"""Pytest fixtures for storefront tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import payments
from cart import CartSession
from guest_cart import GuestCart, MemoryStorage
from payments import RazorpayClient
from schemas import ShippingAddress
from settings import PricingSettings

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test_secret"


@pytest.fixture
def mongo_db():
    """A fresh in-memory database per test."""
    client = mongomock.MongoClient()
    return client["storefront_test"]


@pytest.fixture
def catalog(mongo_db):
    """Insert a small catalog and return the ids as strings.

    tee: price 600, no discount; variants M (stock 10) and L (stock 1)
    hoodie: price 1500, discount price 1200; variant S (stock 5)
    """
    now = datetime.now(timezone.utc)
    tee_id = ObjectId()
    hoodie_id = ObjectId()
    mongo_db.products.insert_many([
        {"_id": tee_id, "name": "Cotton Tee", "slug": "cotton-tee", "price": 600.0, "discount_price": None,
         "is_active": True, "is_featured": True, "featured_image": "/img/tee.jpg", "created_at": now},
        {"_id": hoodie_id, "name": "Fleece Hoodie", "slug": "fleece-hoodie", "price": 1500.0,
         "discount_price": 1200.0, "is_active": True, "is_featured": False, "created_at": now},
    ])
    tee_m, tee_l, hoodie_s = ObjectId(), ObjectId(), ObjectId()
    mongo_db.product_variants.insert_many([
        {"_id": tee_m, "product_id": str(tee_id), "size": "M", "color": "Black", "stock_quantity": 10},
        {"_id": tee_l, "product_id": str(tee_id), "size": "L", "color": "Black", "stock_quantity": 1},
        {"_id": hoodie_s, "product_id": str(hoodie_id), "size": "S", "color": "Grey", "stock_quantity": 5},
    ])
    return {
        "tee": str(tee_id),
        "hoodie": str(hoodie_id),
        "tee_m": str(tee_m),
        "tee_l": str(tee_l),
        "hoodie_s": str(hoodie_s),
    }


@pytest.fixture
def save10(mongo_db):
    mongo_db.coupons.insert_one({
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "min_order_amount": 0,
        "max_discount_amount": None,
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
        "expires_at": None,
    })
    return "SAVE10"


@pytest.fixture
def pricing():
    return PricingSettings(delivery_fee=50.0, free_delivery_threshold=999.0)


@pytest.fixture
def address():
    return ShippingAddress(
        full_name="Asha Rao",
        phone="9876543210",
        address_line_1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        postal_code="560001",
    )


@pytest.fixture
def guest_storage():
    return MemoryStorage()


@pytest.fixture
def make_session(mongo_db, guest_storage):
    def _make(user_id=None):
        return CartSession(mongo_db, GuestCart(guest_storage), user_id=user_id).start()
    return _make


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = str(data)

    def json(self):
        return self._data


@pytest.fixture
def gateway_calls(monkeypatch):
    """Stub the Razorpay orders endpoint; returns the list of captured calls."""
    calls = []

    def fake_post(url, auth=None, json=None, timeout=None):
        calls.append({"url": url, "auth": auth, "json": json, "timeout": timeout})
        return FakeResponse(200, {
            "id": f"order_TEST{len(calls)}",
            "amount": json["amount"],
            "currency": json["currency"],
            "receipt": json["receipt"],
        })

    monkeypatch.setattr(payments.requests, "post", fake_post)
    return calls


@pytest.fixture
def gateway(gateway_calls):
    return RazorpayClient(TEST_KEY_ID, TEST_KEY_SECRET)


@pytest.fixture
def failing_gateway(monkeypatch):
    def fake_post(url, auth=None, json=None, timeout=None):
        return FakeResponse(500, {"error": {"description": "gateway down"}})

    monkeypatch.setattr(payments.requests, "post", fake_post)
    return RazorpayClient(TEST_KEY_ID, TEST_KEY_SECRET)


@pytest.fixture
def api_client(mongo_db, gateway):
    """Test client wired to the in-memory database and stubbed gateway."""
    from database import get_db
    from main import app, get_gateway

    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
