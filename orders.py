"""
Order processing.

``OrderService.create`` validates an order, checks stock, writes the
order with its item snapshots and then books the side effects: variant
stock goes down and the coupon's ``used_count`` goes up. The stock check
reads before it writes, so two orders for the last unit can both pass it.
The decrement itself only applies while enough stock is left, which keeps
stock from going negative; an order that loses that race is logged.
"""
import logging
import secrets
import string
from typing import List, Optional

from pymongo.errors import PyMongoError

from database import create_document, to_obj_id, utc_now
from errors import (
    InsufficientStockError,
    InvalidOrderError,
    InvalidStatusTransitionError,
    OrderAccessDeniedError,
    OrderCreationError,
    OrderNotFoundError,
    VariantNotFoundError,
)
from pricing import order_total
from schemas import OrderCreate, OrderItems, Orders, from_doc

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "RJ"

STATUS_SEQUENCE = ["pending", "confirmed", "processing", "shipped", "delivered"]
TERMINAL_STATUSES = {"delivered", "cancelled"}

PAYMENT_TRANSITIONS = {
    "pending": {"paid", "failed"},
    "failed": {"paid"},
    "paid": {"refunded"},
    "refunded": set(),
}

# fields a customer sees when looking an order up without signing in
LOOKUP_FIELDS = (
    "id", "order_number", "status", "payment_method", "payment_status",
    "customer_name", "customer_email", "customer_phone",
    "shipping_address_line_1", "shipping_address_line_2", "shipping_city",
    "shipping_state", "shipping_postal_code", "shipping_country",
    "subtotal", "discount_amount", "applied_delivery_fee", "total_amount",
    "coupon_code", "coupon_discount", "created_at", "updated_at", "delivered_at",
)


def generate_order_number() -> str:
    date_str = utc_now().strftime("%Y%m%d")
    alphabet = string.ascii_uppercase + string.digits
    random_str = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"{ORDER_NUMBER_PREFIX}{date_str}{random_str}"


def can_transition(current: str, requested: str) -> bool:
    if current in TERMINAL_STATUSES or current == requested:
        return False
    if requested == "cancelled":
        return True
    return STATUS_SEQUENCE.index(requested) > STATUS_SEQUENCE.index(current)


class OrderService:
    def __init__(self, database):
        self.db = database

    # -----------------------------
    # Creation
    # -----------------------------

    def validate(self, order_in: OrderCreate) -> None:
        if not order_in.customer_name.strip() or not order_in.items:
            raise InvalidOrderError("Missing required fields")
        address = (
            order_in.shipping_address_line_1, order_in.shipping_city,
            order_in.shipping_state, order_in.shipping_postal_code,
        )
        if not all(part.strip() for part in address):
            raise InvalidOrderError("Incomplete shipping address")
        if order_in.subtotal <= 0 or order_in.total_amount < 0:
            raise InvalidOrderError("Invalid order amounts")
        adjustments = (order_in.discount_amount, order_in.coupon_discount, order_in.applied_delivery_fee)
        if any(amount < 0 for amount in adjustments):
            raise InvalidOrderError("Discounts and fees cannot be negative")
        expected = order_total(
            order_in.subtotal, order_in.discount_amount,
            order_in.coupon_discount, order_in.applied_delivery_fee,
        )
        if abs(expected - order_in.total_amount) > 0.01:
            raise InvalidOrderError("Order total does not match its pricing")
        for item in order_in.items:
            if not item.variant_id or item.quantity <= 0:
                raise InvalidOrderError(f"Invalid item data for {item.product_name}")

    def check_stock(self, order_in: OrderCreate) -> None:
        for item in order_in.items:
            variant = self.db.product_variants.find_one({"_id": to_obj_id(item.variant_id)})
            if not variant:
                raise VariantNotFoundError(item.product_name)
            available = variant.get("stock_quantity", 0)
            if available < item.quantity:
                raise InsufficientStockError(item.product_name, available, item.quantity)

    def create(self, order_in: OrderCreate) -> Orders:
        self.validate(order_in)
        self.check_stock(order_in)

        data = order_in.model_dump(exclude={"items"})
        data.update({
            "order_number": generate_order_number(),
            "customer_email": str(order_in.customer_email).lower(),
            "coupon_code": order_in.coupon_code.upper() if order_in.coupon_code else None,
            "status": "pending",
            "payment_status": "pending",
            "razorpay_order_id": None,
            "razorpay_payment_id": None,
            "delivered_at": None,
        })
        try:
            order_id = create_document("orders", data, self.db)
        except PyMongoError:
            logger.exception("Order creation error")
            raise OrderCreationError("Failed to create order")

        now = utc_now()
        item_docs = [
            {**item.model_dump(), "order_id": order_id, "created_at": now}
            for item in order_in.items
        ]
        try:
            self.db.order_items.insert_many(item_docs)
        except PyMongoError:
            logger.exception("Order items creation error, rolling back order %s", order_id)
            self.db.orders.delete_one({"_id": to_obj_id(order_id)})
            raise OrderCreationError("Failed to create order items")

        self._decrement_stock(order_in)
        if data["coupon_code"]:
            self.db.coupons.update_one({"code": data["coupon_code"]}, {"$inc": {"used_count": 1}})

        logger.info("Created order %s (%s, total %.2f)", data["order_number"], order_in.payment_method,
                    order_in.total_amount)
        return self.get(order_id)

    def _decrement_stock(self, order_in: OrderCreate) -> None:
        for item in order_in.items:
            res = self.db.product_variants.update_one(
                {"_id": to_obj_id(item.variant_id), "stock_quantity": {"$gte": item.quantity}},
                {"$inc": {"stock_quantity": -item.quantity}, "$set": {"updated_at": utc_now()}},
            )
            if res.modified_count == 0:
                logger.warning("Stock for variant %s ran out before it could be decremented", item.variant_id)

    # -----------------------------
    # Reads
    # -----------------------------

    def _items_for(self, order_id: str) -> List[OrderItems]:
        return [from_doc(OrderItems, doc) for doc in self.db.order_items.find({"order_id": order_id})]

    def _hydrate(self, doc: dict) -> Orders:
        order = from_doc(Orders, doc)
        order.order_items = self._items_for(order.id)
        return order

    def get(self, order_id: str, user_id: Optional[str] = None, check_access: bool = False) -> Orders:
        doc = self.db.orders.find_one({"_id": to_obj_id(order_id)})
        if not doc:
            raise OrderNotFoundError(order_id)
        owner = doc.get("user_id")
        # guest orders are readable by anyone holding the id
        if check_access and owner is not None and owner != user_id:
            raise OrderAccessDeniedError(order_id)
        return self._hydrate(doc)

    def get_by_gateway_order(self, razorpay_order_id: str) -> Orders:
        doc = self.db.orders.find_one({"razorpay_order_id": razorpay_order_id})
        if not doc:
            raise OrderNotFoundError(razorpay_order_id)
        return self._hydrate(doc)

    def list_for_user(self, user_id: str) -> List[Orders]:
        docs = self.db.orders.find({"user_id": user_id}).sort("created_at", -1)
        return [self._hydrate(doc) for doc in docs]

    def recent(self, limit: int = 5) -> List[Orders]:
        docs = self.db.orders.find().sort("created_at", -1).limit(limit)
        return [self._hydrate(doc) for doc in docs]

    def lookup(self, order_number: str, email: Optional[str] = None, phone: Optional[str] = None) -> dict:
        if not email and not phone:
            raise InvalidOrderError("Either email or phone number is required")
        if not order_number or not order_number.strip():
            raise InvalidOrderError("Order number is required")

        query = {"order_number": order_number.strip().upper()}
        contact = []
        if email:
            contact.append({"customer_email": email.strip().lower()})
        if phone:
            contact.append({"customer_phone": phone.strip()})
        query["$or"] = contact

        doc = self.db.orders.find_one(query)
        if not doc:
            raise OrderNotFoundError(order_number)
        order = self._hydrate(doc)
        sanitized = {k: v for k, v in order.model_dump().items() if k in LOOKUP_FIELDS}
        sanitized["order_items"] = [item.model_dump() for item in order.order_items]
        return sanitized

    # -----------------------------
    # Transitions
    # -----------------------------

    def update_status(self, order_id: str, status: str) -> Orders:
        order = self.get(order_id)
        if status not in STATUS_SEQUENCE and status != "cancelled":
            raise InvalidStatusTransitionError("status", order.status, status)
        if not can_transition(order.status, status):
            raise InvalidStatusTransitionError("status", order.status, status)

        update = {"status": status, "updated_at": utc_now()}
        if status == "delivered":
            update["delivered_at"] = utc_now()
        self.db.orders.update_one({"_id": to_obj_id(order_id)}, {"$set": update})
        logger.info("Order %s status %s -> %s", order.order_number, order.status, status)
        return self.get(order_id)

    def update_payment_status(self, order_id: str, payment_status: str,
                              razorpay_payment_id: Optional[str] = None) -> Orders:
        order = self.get(order_id)
        if payment_status not in PAYMENT_TRANSITIONS.get(order.payment_status, set()):
            raise InvalidStatusTransitionError("payment_status", order.payment_status, payment_status)

        update = {"payment_status": payment_status, "updated_at": utc_now()}
        if razorpay_payment_id:
            update["razorpay_payment_id"] = razorpay_payment_id
        self.db.orders.update_one({"_id": to_obj_id(order_id)}, {"$set": update})
        logger.info("Order %s payment %s -> %s", order.order_number, order.payment_status, payment_status)
        return self.get(order_id)

    def attach_gateway_order(self, order_id: str, razorpay_order_id: str) -> None:
        self.db.orders.update_one(
            {"_id": to_obj_id(order_id)},
            {"$set": {"razorpay_order_id": razorpay_order_id, "updated_at": utc_now()}},
        )
