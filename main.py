import os
import re
import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.errors import PyMongoError

import admin
from cart import CartSession
from checkout import CheckoutSession
from coupons import apply_coupon
from database import db, get_db, serialize_doc, to_obj_id
from errors import (
    CartLineNotFoundError,
    CheckoutStepError,
    CouponNotApplicableError,
    CouponNotFoundError,
    EmptyCartError,
    InsufficientStockError,
    InvalidIdError,
    InvalidOrderError,
    InvalidQuantityError,
    InvalidStatusTransitionError,
    OrderAccessDeniedError,
    OrderCreationError,
    OrderNotFoundError,
    PaymentGatewayError,
    PaymentVerificationError,
    RecordNotFoundError,
    StorefrontError,
    VariantNotFoundError,
)
from guest_cart import GUEST_USER_ID, GuestCart, MemoryStorage
from orders import OrderService
from payments import RazorpayClient
from pricing import build_quote
from schemas import CartItems, OrderCreate, PaymentMethod, Products, ShippingAddress, from_doc
from settings import get_settings_map, load_pricing_settings
from server_cart import ServerCartStore


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)


# -----------------------------
# Error mapping
# -----------------------------

ERROR_STATUS_CODES = {
    InvalidIdError: 400,
    RecordNotFoundError: 404,
    CartLineNotFoundError: 404,
    InvalidQuantityError: 400,
    EmptyCartError: 400,
    CouponNotFoundError: 404,
    CouponNotApplicableError: 400,
    InvalidOrderError: 400,
    VariantNotFoundError: 400,
    InsufficientStockError: 400,
    OrderCreationError: 500,
    OrderNotFoundError: 404,
    OrderAccessDeniedError: 403,
    InvalidStatusTransitionError: 400,
    CheckoutStepError: 400,
    PaymentGatewayError: 502,
    PaymentVerificationError: 400,
}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, CouponNotApplicableError):
        content["reason"] = exc.reason
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.errors(include_url=False, include_context=False, include_input=False)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error_type": "DatabaseError"})


# -----------------------------
# Dependencies
# -----------------------------

def get_gateway() -> RazorpayClient:
    return RazorpayClient.from_env()


def get_orders(database=Depends(get_db)) -> OrderService:
    return OrderService(database)


def cart_for(database, user_id: Optional[str], guest_items: Optional[List["GuestCartLine"]] = None) -> CartSession:
    guest_cart = GuestCart(MemoryStorage())
    if guest_items:
        guest_cart.save([line.to_cart_item() for line in guest_items])
    return CartSession(database, guest_cart, user_id=user_id).start()


def cart_response(session: CartSession) -> dict:
    totals = session.totals
    return {
        "items": [item.model_dump() for item in session.items],
        "subtotal": totals.subtotal,
        "total_items": totals.total_items,
        "total_quantity": totals.total_quantity,
    }


# -----------------------------
# Schemas (request bodies)
# -----------------------------

class GuestCartLine(BaseModel):
    id: Optional[str] = None
    product_id: str
    variant_id: str
    quantity: int = Field(..., ge=1)

    def to_cart_item(self) -> CartItems:
        return CartItems(
            id=self.id or f"guest_{self.variant_id}",
            user_id=GUEST_USER_ID,
            product_id=self.product_id,
            variant_id=self.variant_id,
            quantity=self.quantity,
        )


class CartAdd(BaseModel):
    user_id: str
    product_id: str
    variant_id: str
    quantity: int = Field(1, ge=1)


class CartQuantity(BaseModel):
    user_id: str
    quantity: int


class CartMerge(BaseModel):
    user_id: str
    guest_items: List[GuestCartLine] = []


class CouponApply(BaseModel):
    code: str
    subtotal: float = Field(..., ge=0)


class QuoteRequest(BaseModel):
    subtotal: float = Field(..., ge=0)
    payment_method: PaymentMethod = "online"
    coupon_code: Optional[str] = None


class CheckoutRequest(BaseModel):
    user_id: Optional[str] = None
    customer_email: EmailStr
    address: ShippingAddress
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    guest_items: List[GuestCartLine] = []


class PaymentConfirm(BaseModel):
    user_id: Optional[str] = None
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class OrderLookup(BaseModel):
    order_number: str
    email: Optional[str] = None
    phone: Optional[str] = None


class PaymentOrderRequest(BaseModel):
    order_id: str


# -----------------------------
# Health & Test
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["razorpay_key_id"] = "✅ Set" if os.getenv("RAZORPAY_KEY_ID") else "❌ Not Set"
    return response


# -----------------------------
# Catalog
# -----------------------------

@app.get("/api/products")
def list_products(
    category_id: Optional[str] = Query(default=None),
    min_price: Optional[float] = Query(default=None),
    max_price: Optional[float] = Query(default=None),
    featured: Optional[bool] = Query(default=None),
    q: Optional[str] = Query(default=None),
    database=Depends(get_db),
):
    filt = {"is_active": True}
    if category_id:
        filt["category_id"] = category_id
    if min_price is not None or max_price is not None:
        price_query = {}
        if min_price is not None:
            price_query["$gte"] = float(min_price)
        if max_price is not None:
            price_query["$lte"] = float(max_price)
        filt["price"] = price_query
    if featured is not None:
        filt["is_featured"] = featured
    if q:
        filt["name"] = {"$regex": re.escape(q.strip()), "$options": "i"}
    items = [serialize_doc(it) for it in database.products.find(filt).sort("created_at", -1)]
    return {"items": items}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, database=Depends(get_db)):
    doc = database.products.find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    product = serialize_doc(doc)
    product["variants"] = [serialize_doc(v) for v in database.product_variants.find({"product_id": product["id"]})]
    return product


SEARCH_MIN_LENGTH = 2
SEARCH_PRODUCT_LIMIT = 8
SEARCH_CATEGORY_LIMIT = 4


def product_suggestion(doc: dict, category_names: dict) -> dict:
    product = from_doc(Products, doc)
    images = [product.featured_image] + product.image_urls
    return {
        "type": "product",
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "price": product.unit_price,
        "original_price": product.price if product.discount_price else None,
        "category": category_names.get(product.category_id),
        "image": next((url for url in images if url), None),
        "has_discount": bool(product.discount_price),
    }


@app.get("/api/search")
def search(q: Optional[str] = Query(default=None), database=Depends(get_db)):
    """Typeahead suggestions: matching products first, then categories."""
    query = (q or "").strip()
    if len(query) < SEARCH_MIN_LENGTH:
        return {"suggestions": [], "total": 0, "query": query}

    name_filter = {"$regex": re.escape(query), "$options": "i"}
    product_docs = list(
        database.products.find({"name": name_filter, "is_active": True})
        .sort([("is_featured", -1), ("is_trending", -1)])
        .limit(SEARCH_PRODUCT_LIMIT)
    )
    category_ids = [
        ObjectId(doc["category_id"]) for doc in product_docs if ObjectId.is_valid(doc.get("category_id"))
    ]
    category_names = {
        str(doc["_id"]): doc.get("name") for doc in database.categories.find({"_id": {"$in": category_ids}})
    }
    categories = database.categories.find({"name": name_filter, "is_active": True}).limit(SEARCH_CATEGORY_LIMIT)

    suggestions = [product_suggestion(doc, category_names) for doc in product_docs]
    suggestions += [
        {
            "type": "category",
            "id": str(doc["_id"]),
            "name": doc.get("name"),
            "slug": doc.get("slug"),
            "image": doc.get("image_url"),
        }
        for doc in categories
    ]
    return {"suggestions": suggestions, "total": len(suggestions), "query": query}


@app.get("/api/settings")
def public_settings(database=Depends(get_db)):
    pricing = load_pricing_settings(database)
    return {
        "settings": get_settings_map(database),
        "delivery_fee": pricing.delivery_fee,
        "free_delivery_threshold": pricing.free_delivery_threshold,
    }


# -----------------------------
# Cart
# -----------------------------

@app.get("/api/cart")
def get_cart(user_id: str, database=Depends(get_db)):
    return cart_response(cart_for(database, user_id))


@app.post("/api/cart")
def add_to_cart(item: CartAdd, database=Depends(get_db)):
    session = cart_for(database, item.user_id)
    session.add_item(item.product_id, item.variant_id, item.quantity)
    return cart_response(session)


@app.put("/api/cart/{item_id}")
def update_cart(item_id: str, body: CartQuantity, database=Depends(get_db)):
    session = cart_for(database, body.user_id)
    session.update_quantity(item_id, body.quantity)
    return cart_response(session)


@app.delete("/api/cart/{item_id}")
def remove_from_cart(item_id: str, user_id: str, database=Depends(get_db)):
    session = cart_for(database, user_id)
    session.remove_item(item_id)
    return cart_response(session)


@app.delete("/api/cart")
def clear_cart(user_id: str, database=Depends(get_db)):
    removed = ServerCartStore(database, user_id).clear()
    return {"deleted": removed}


@app.post("/api/cart/merge")
def merge_cart(body: CartMerge, database=Depends(get_db)):
    """Fold a guest cart into a user's server cart right after sign-in."""
    guest_cart = GuestCart(MemoryStorage())
    guest_cart.save([line.to_cart_item() for line in body.guest_items])
    session = CartSession(database, guest_cart).start()
    result = session.sign_in(body.user_id)
    response = cart_response(session)
    response["merged"] = result.merged
    response["failed"] = len(result.failed)
    return response


# -----------------------------
# Coupons & checkout
# -----------------------------

@app.post("/api/coupons/apply")
def apply_coupon_code(body: CouponApply, database=Depends(get_db)):
    coupon, discount = apply_coupon(database, body.code, body.subtotal)
    return {"code": coupon.code, "discount": discount}


@app.post("/api/checkout/quote")
def checkout_quote(body: QuoteRequest, database=Depends(get_db)):
    pricing = load_pricing_settings(database)
    code, discount = None, 0.0
    if body.coupon_code:
        coupon, discount = apply_coupon(database, body.coupon_code, body.subtotal)
        code = coupon.code
    return build_quote(body.subtotal, body.payment_method, pricing, coupon_code=code,
                       coupon_discount=discount).as_dict()


@app.post("/api/checkout")
def place_order(body: CheckoutRequest, database=Depends(get_db), gateway: RazorpayClient = Depends(get_gateway)):
    session = cart_for(database, body.user_id, body.guest_items)
    checkout = CheckoutSession(session, OrderService(database), gateway, load_pricing_settings(database),
                               customer_email=str(body.customer_email))
    checkout.select_address(body.address)
    checkout.select_payment_method(body.payment_method)
    if body.coupon_code:
        checkout.apply_coupon(body.coupon_code)
    result = checkout.place_order()
    return result.as_dict()


def settle_payment(database, gateway: RazorpayClient, body: PaymentConfirm):
    orders = OrderService(database)
    order = orders.get_by_gateway_order(body.razorpay_order_id)
    session = cart_for(database, body.user_id or order.user_id)
    checkout = CheckoutSession(session, orders, gateway, load_pricing_settings(database),
                               customer_email=order.customer_email)
    return checkout.confirm_payment(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature)


@app.post("/api/checkout/confirm")
def confirm_payment(body: PaymentConfirm, database=Depends(get_db), gateway: RazorpayClient = Depends(get_gateway)):
    return settle_payment(database, gateway, body).as_dict()


# -----------------------------
# Orders
# -----------------------------

@app.post("/api/orders")
def create_order(order_in: OrderCreate, orders: OrderService = Depends(get_orders)):
    order = orders.create(order_in)
    return {
        "success": True,
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "total_amount": order.total_amount,
            "payment_method": order.payment_method,
        },
    }


@app.get("/api/orders")
def list_orders(user_id: str, orders: OrderService = Depends(get_orders)):
    return {"orders": [o.model_dump() for o in orders.list_for_user(user_id)]}


@app.post("/api/orders/lookup")
def lookup_order(body: OrderLookup, orders: OrderService = Depends(get_orders)):
    return {"success": True, "order": orders.lookup(body.order_number, body.email, body.phone)}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user_id: Optional[str] = None, orders: OrderService = Depends(get_orders)):
    return {"order": orders.get(order_id, user_id=user_id, check_access=True).model_dump()}


# -----------------------------
# Payments (Razorpay)
# -----------------------------

@app.post("/api/payment/create-order")
def create_payment_order(body: PaymentOrderRequest, orders: OrderService = Depends(get_orders),
                         gateway: RazorpayClient = Depends(get_gateway)):
    order = orders.get(body.order_id)
    if order.payment_method != "online" or order.payment_status == "paid":
        raise HTTPException(status_code=400, detail="Order does not need an online payment")
    data = gateway.create_order(order.total_amount, receipt=order.order_number, notes={"order_id": order.id})
    orders.attach_gateway_order(order.id, data["id"])
    return {"order": data, "key_id": gateway.public_key}


@app.post("/api/payment/verify")
def verify_payment(body: PaymentConfirm, database=Depends(get_db), gateway: RazorpayClient = Depends(get_gateway)):
    result = settle_payment(database, gateway, body)
    if result.action != "confirmed":
        raise PaymentVerificationError(body.razorpay_order_id)
    return {"ok": True, "order_id": result.order.id, "cart_cleared": result.cart_cleared}


WEBHOOK_PAYMENT_STATUS = {"captured": "paid", "failed": "failed", "refunded": "refunded"}


@app.post("/api/payment/webhook")
async def payment_webhook(payload: dict, database=Depends(get_db)):
    # Minimal webhook handler: record payment status for known orders
    entity = payload.get("payload", {}).get("payment", {}).get("entity", {})
    gateway_order_id = entity.get("order_id")
    status = WEBHOOK_PAYMENT_STATUS.get(entity.get("status"))
    if gateway_order_id and status:
        orders = OrderService(database)
        try:
            order = orders.get_by_gateway_order(gateway_order_id)
            if order.payment_status != status:
                orders.update_payment_status(order.id, status, entity.get("id"))
                # a captured payment settles the order
                if status == "paid" and order.user_id:
                    cart_for(database, order.user_id).clear()
        except (OrderNotFoundError, InvalidStatusTransitionError) as e:
            logger.warning("Ignoring webhook %s for %s: %s", payload.get("event"), gateway_order_id, e)
    return {"received": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
