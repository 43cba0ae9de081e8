"""Tests for order creation, access, lookup and status transitions."""

import re
from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from errors import (
    InsufficientStockError,
    InvalidOrderError,
    InvalidStatusTransitionError,
    OrderAccessDeniedError,
    OrderCreationError,
    OrderNotFoundError,
    VariantNotFoundError,
)
from orders import OrderService, can_transition
from schemas import OrderCreate


def order_payload(catalog, **overrides):
    data = {
        "user_id": "user-1",
        "payment_method": "cod",
        "customer_name": "Asha Rao",
        "customer_email": "Asha.Rao@Gmail.com",
        "customer_phone": "9876543210",
        "shipping_address_line_1": "12 MG Road",
        "shipping_city": "Bengaluru",
        "shipping_state": "Karnataka",
        "shipping_postal_code": "560001",
        "subtotal": 1200,
        "coupon_code": None,
        "coupon_discount": 0,
        "applied_delivery_fee": 0,
        "total_amount": 1200,
        "items": [{
            "product_id": catalog["tee"],
            "variant_id": catalog["tee_m"],
            "product_name": "Cotton Tee",
            "size": "M",
            "color": "Black",
            "quantity": 2,
            "unit_price": 600,
            "total_price": 1200,
        }],
    }
    data.update(overrides)
    return OrderCreate(**data)


@pytest.fixture
def service(mongo_db):
    return OrderService(mongo_db)


class TestCreateOrder:
    def test_create_writes_order_and_item_snapshots(self, service, mongo_db, catalog):
        order = service.create(order_payload(catalog))

        assert re.match(r"^RJ\d{8}[A-Z0-9]{4}$", order.order_number)
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.customer_email == "asha.rao@gmail.com"
        assert len(order.order_items) == 1
        assert order.order_items[0].product_name == "Cotton Tee"
        assert order.order_items[0].total_price == 1200

    def test_create_decrements_stock(self, service, mongo_db, catalog):
        service.create(order_payload(catalog))
        variant = mongo_db.product_variants.find_one({"_id": ObjectId(catalog["tee_m"])})
        assert variant["stock_quantity"] == 8

    def test_create_counts_coupon_use(self, service, mongo_db, catalog, save10):
        service.create(order_payload(catalog, coupon_code="save10", coupon_discount=120, total_amount=1080))

        assert mongo_db.coupons.find_one({"code": "SAVE10"})["used_count"] == 1

    def test_insufficient_stock(self, service, mongo_db, catalog):
        payload = order_payload(catalog)
        payload.items[0].variant_id = catalog["tee_l"]

        with pytest.raises(InsufficientStockError) as exc_info:
            service.create(payload)

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert mongo_db.orders.count_documents({}) == 0

    def test_unknown_variant(self, service, catalog):
        payload = order_payload(catalog)
        payload.items[0].variant_id = str(ObjectId())

        with pytest.raises(VariantNotFoundError):
            service.create(payload)

    def test_total_must_match_pricing(self, service, catalog):
        with pytest.raises(InvalidOrderError):
            service.create(order_payload(catalog, total_amount=999))

    def test_total_may_be_zero(self, service, catalog):
        payload = order_payload(catalog, coupon_code=None, coupon_discount=1500, total_amount=0)
        assert service.create(payload).total_amount == 0

    def test_negative_adjustments_rejected_before_write(self, service, mongo_db, catalog):
        payload = order_payload(catalog, total_amount=1210)
        payload.discount_amount = -10

        with pytest.raises(InvalidOrderError, match="cannot be negative"):
            service.create(payload)
        assert mongo_db.orders.count_documents({}) == 0
        variant = mongo_db.product_variants.find_one({"_id": ObjectId(catalog["tee_m"])})
        assert variant["stock_quantity"] == 10

    @pytest.mark.parametrize("field", ["discount_amount", "coupon_discount", "applied_delivery_fee"])
    def test_negative_adjustments_fail_schema(self, catalog, field):
        with pytest.raises(ValidationError):
            order_payload(catalog, **{field: -10})

    def test_incomplete_address(self, service, catalog):
        with pytest.raises(InvalidOrderError, match="Incomplete shipping address"):
            service.create(order_payload(catalog, shipping_city="  "))

    def test_no_items(self, service, catalog):
        with pytest.raises(InvalidOrderError, match="Missing required fields"):
            service.create(order_payload(catalog, items=[]))

    def test_item_rollback_removes_order(self, service, mongo_db, catalog, monkeypatch):
        def broken_insert_many(self, documents, *args, **kwargs):
            raise PyMongoError("insert failed")

        monkeypatch.setattr(mongomock.Collection, "insert_many", broken_insert_many)

        with pytest.raises(OrderCreationError):
            service.create(order_payload(catalog))
        assert mongo_db.orders.count_documents({}) == 0


class TestReadOrders:
    def test_owner_can_read(self, service, catalog):
        order = service.create(order_payload(catalog))
        assert service.get(order.id, user_id="user-1", check_access=True).id == order.id

    def test_other_user_is_denied(self, service, catalog):
        order = service.create(order_payload(catalog))
        with pytest.raises(OrderAccessDeniedError):
            service.get(order.id, user_id="user-2", check_access=True)

    def test_guest_order_is_readable_by_anyone(self, service, catalog):
        order = service.create(order_payload(catalog, user_id=None))
        assert service.get(order.id, check_access=True).user_id is None

    def test_missing_order(self, service):
        with pytest.raises(OrderNotFoundError):
            service.get(str(ObjectId()))

    def test_list_for_user_newest_first(self, service, mongo_db, catalog):
        first = service.create(order_payload(catalog))
        mongo_db.orders.update_one(
            {"_id": ObjectId(first.id)}, {"$set": {"created_at": datetime(2020, 1, 1, tzinfo=timezone.utc)}}
        )
        payload = order_payload(catalog)
        payload.items[0].quantity = 1
        payload.items[0].total_price = 600
        second = service.create(payload.model_copy(update={"subtotal": 600, "total_amount": 600}))

        orders = service.list_for_user("user-1")
        assert [o.id for o in orders] == [second.id, first.id]


class TestLookup:
    def test_lookup_by_email(self, service, catalog):
        order = service.create(order_payload(catalog))
        found = service.lookup(f" {order.order_number.lower()} ", email="ASHA.RAO@gmail.com")

        assert found["order_number"] == order.order_number
        assert "razorpay_order_id" not in found
        assert len(found["order_items"]) == 1

    def test_lookup_by_phone(self, service, catalog):
        order = service.create(order_payload(catalog))
        assert service.lookup(order.order_number, phone="9876543210")["id"] == order.id

    def test_lookup_wrong_contact(self, service, catalog):
        order = service.create(order_payload(catalog))
        with pytest.raises(OrderNotFoundError):
            service.lookup(order.order_number, email="someone@gmail.com")

    def test_lookup_needs_contact(self, service):
        with pytest.raises(InvalidOrderError):
            service.lookup("RJ20261019ABCD")


class TestStatusTransitions:
    def test_forward_moves(self, service, catalog):
        order = service.create(order_payload(catalog))
        order = service.update_status(order.id, "confirmed")
        order = service.update_status(order.id, "shipped")

        assert order.status == "shipped"
        assert order.delivered_at is None

    def test_delivered_is_stamped_and_terminal(self, service, catalog):
        order = service.create(order_payload(catalog))
        order = service.update_status(order.id, "delivered")

        assert order.delivered_at is not None
        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(order.id, "cancelled")

    def test_backward_move_rejected(self, service, catalog):
        order = service.create(order_payload(catalog))
        service.update_status(order.id, "processing")
        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(order.id, "confirmed")

    def test_cancel_is_terminal(self, service, catalog):
        order = service.create(order_payload(catalog))
        service.update_status(order.id, "cancelled")
        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(order.id, "confirmed")

    def test_can_transition_table(self):
        assert can_transition("pending", "processing")
        assert can_transition("shipped", "cancelled")
        assert not can_transition("shipped", "shipped")
        assert not can_transition("cancelled", "pending")

    def test_payment_status_transitions(self, service, catalog):
        order = service.create(order_payload(catalog, payment_method="online"))
        order = service.update_payment_status(order.id, "failed")
        order = service.update_payment_status(order.id, "paid", "pay_123")

        assert order.payment_status == "paid"
        assert order.razorpay_payment_id == "pay_123"
        assert service.update_payment_status(order.id, "refunded").payment_status == "refunded"
        with pytest.raises(InvalidStatusTransitionError):
            service.update_payment_status(order.id, "paid")
