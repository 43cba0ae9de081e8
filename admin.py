"""
Admin API

List/filter/paginate/create/update/delete for each catalog and marketing
collection, plus order management, a dashboard summary and site settings.
"""
import logging
import math
import re
from typing import Optional, Type

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from database import as_utc, create_document, get_db, serialize_doc, to_obj_id, utc_now
from errors import RecordNotFoundError
from orders import OrderService
from schemas import Banners, Categories, Coupons, Products, ProductVariants, SiteSettings, OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# -----------------------------
# Helpers
# -----------------------------

def paginate(collection, filt: dict, sort: list, page: int, limit: int) -> dict:
    total = collection.count_documents(filt)
    cursor = collection.find(filt)
    if sort:
        cursor = cursor.sort(sort)
    items = [serialize_doc(doc) for doc in cursor.skip((page - 1) * limit).limit(limit)]
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


def search_filter(fields, term: Optional[str]) -> dict:
    if not term:
        return {}
    pattern = re.escape(term.strip())
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def get_record(database, collection: str, record_id: str) -> dict:
    doc = database[collection].find_one({"_id": to_obj_id(record_id)})
    if not doc:
        raise RecordNotFoundError(collection, record_id)
    return doc


def validated_update(model: Type[BaseModel], existing: dict, payload: dict) -> dict:
    """Validate ``payload`` merged over the stored record; return the fields to $set."""
    merged = {**serialize_doc(existing), **payload}
    record = model.model_validate(merged)
    values = record.model_dump(exclude={"id"})
    return {k: values[k] for k in payload if k in values}


SORTS = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "name_asc": [("name", 1)],
    "name_desc": [("name", -1)],
    "price_low": [("price", 1)],
    "price_high": [("price", -1)],
    "amount_high": [("total_amount", -1)],
    "amount_low": [("total_amount", 1)],
    "display_order": [("display_order", 1)],
}


def register_crud(name: str, collection: str, model: Type[BaseModel], search_fields, flag_field: Optional[str],
                  default_sort: str = "newest"):
    """Add list/get/create/update/delete routes for one collection."""

    @router.get(f"/{name}", name=f"list_{name}")
    def list_records(
        search: Optional[str] = Query(default=None),
        active: Optional[bool] = Query(default=None),
        parent_id: Optional[str] = Query(default=None),
        sort_by: str = Query(default=default_sort),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        database=Depends(get_db),
    ):
        filt = search_filter(search_fields, search)
        if active is not None and flag_field:
            filt[flag_field] = active
        if parent_id is not None and collection == "product_variants":
            filt["product_id"] = parent_id
        if parent_id is not None and collection == "products":
            filt["category_id"] = parent_id
        return paginate(database[collection], filt, SORTS.get(sort_by, SORTS[default_sort]), page, limit)

    @router.get(f"/{name}/{{record_id}}", name=f"get_{name}")
    def get_one(record_id: str, database=Depends(get_db)):
        return serialize_doc(get_record(database, collection, record_id))

    @router.post(f"/{name}", name=f"create_{name}", status_code=201)
    def create(payload: model, database=Depends(get_db)):
        record_id = create_document(collection, payload, database)
        logger.info("Created %s %s", collection, record_id)
        return {"id": record_id}

    @router.patch(f"/{name}/{{record_id}}", name=f"update_{name}")
    def update(record_id: str, payload: dict = Body(...), database=Depends(get_db)):
        existing = get_record(database, collection, record_id)
        changes = validated_update(model, existing, payload)
        changes["updated_at"] = utc_now()
        database[collection].update_one({"_id": existing["_id"]}, {"$set": changes})
        return serialize_doc(get_record(database, collection, record_id))

    @router.delete(f"/{name}/{{record_id}}", name=f"delete_{name}")
    def delete(record_id: str, database=Depends(get_db)):
        res = database[collection].delete_one({"_id": to_obj_id(record_id)})
        if res.deleted_count == 0:
            raise RecordNotFoundError(collection, record_id)
        logger.info("Deleted %s %s", collection, record_id)
        return {"deleted": True}


register_crud("products", "products", Products, ("name", "description"), "is_active")
register_crud("variants", "product_variants", ProductVariants, ("sku", "size", "color"), None)
register_crud("categories", "categories", Categories, ("name", "description"), "is_active",
              default_sort="display_order")
register_crud("coupons", "coupons", Coupons, ("code",), "is_active")
register_crud("banners", "banners", Banners, ("title", "subtitle"), "is_active", default_sort="display_order")


# -----------------------------
# Orders
# -----------------------------

class StatusUpdate(BaseModel):
    status: OrderStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: str


@router.get("/orders")
def list_orders(
    search: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    payment_status: Optional[str] = Query(default=None),
    payment_method: Optional[str] = Query(default=None),
    sort_by: str = Query(default="newest"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    database=Depends(get_db),
):
    filt = search_filter(("order_number", "customer_name", "customer_email"), search)
    if status:
        filt["status"] = status
    if payment_status:
        filt["payment_status"] = payment_status
    if payment_method:
        filt["payment_method"] = payment_method
    return paginate(database.orders, filt, SORTS.get(sort_by, SORTS["newest"]), page, limit)


@router.get("/orders/{order_id}")
def get_order(order_id: str, database=Depends(get_db)):
    return OrderService(database).get(order_id).model_dump()


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdate, database=Depends(get_db)):
    return OrderService(database).update_status(order_id, body.status).model_dump()


@router.put("/orders/{order_id}/payment-status")
def update_order_payment_status(order_id: str, body: PaymentStatusUpdate, database=Depends(get_db)):
    return OrderService(database).update_payment_status(order_id, body.payment_status).model_dump()


# -----------------------------
# Dashboard
# -----------------------------

LOW_STOCK_THRESHOLD = 10
RECENT_ORDERS = 5


def low_stock_products(database, threshold: int = LOW_STOCK_THRESHOLD) -> list:
    """Active products whose variants hold fewer than ``threshold`` units in total."""
    stock = {}
    for variant in database.product_variants.find({}, {"product_id": 1, "stock_quantity": 1}):
        pid = variant.get("product_id")
        stock[pid] = stock.get(pid, 0) + (variant.get("stock_quantity") or 0)
    low = []
    for doc in database.products.find({"is_active": True}, {"name": 1}):
        total = stock.get(str(doc["_id"]), 0)
        if total < threshold:
            low.append({"id": str(doc["_id"]), "name": doc.get("name"), "total_stock": total})
    return low


@router.get("/dashboard")
def dashboard(database=Depends(get_db)):
    today = utc_now().date()
    total_orders = pending_orders = today_orders = 0
    total_revenue = today_revenue = 0.0
    for doc in database.orders.find({}, {"total_amount": 1, "status": 1, "created_at": 1}):
        amount = doc.get("total_amount") or 0
        total_orders += 1
        total_revenue += amount
        if doc.get("status") == "pending":
            pending_orders += 1
        created_at = doc.get("created_at")
        if created_at and as_utc(created_at).date() == today:
            today_orders += 1
            today_revenue += amount

    low_stock = low_stock_products(database)
    return {
        "total_orders": total_orders,
        "total_revenue": round(total_revenue, 2),
        "pending_orders": pending_orders,
        "today_orders": today_orders,
        "today_revenue": round(today_revenue, 2),
        "low_stock_count": len(low_stock),
        "low_stock_products": low_stock,
        "recent_orders": [o.model_dump() for o in OrderService(database).recent(RECENT_ORDERS)],
    }


# -----------------------------
# Settings
# -----------------------------

@router.get("/settings")
def list_settings(database=Depends(get_db)):
    return {"items": [serialize_doc(doc) for doc in database.site_settings.find().sort("key", 1)]}


@router.put("/settings")
def upsert_setting(setting: SiteSettings, database=Depends(get_db)):
    now = utc_now()
    database.site_settings.update_one(
        {"key": setting.key},
        {
            "$set": {"value": setting.value, "description": setting.description, "updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
    return serialize_doc(database.site_settings.find_one({"key": setting.key}))
