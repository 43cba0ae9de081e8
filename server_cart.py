"""
Server-side cart rows.

One ``cart_items`` document per (user, variant). Lines are returned as
``CartItems`` with their product and variant attached so prices always
come from the catalog, never from the client.
"""
from typing import Dict, List, Optional

from bson import ObjectId

from database import create_document, to_obj_id, utc_now
from errors import CartLineNotFoundError
from schemas import CartItems, Products, ProductVariants, from_doc

COLLECTION = "cart_items"


def _object_ids(ids) -> List[ObjectId]:
    return [ObjectId(i) for i in set(ids) if i and ObjectId.is_valid(i)]


def attach_catalog(database, lines: List[CartItems]) -> List[CartItems]:
    """Fill ``product`` and ``variant`` on each line from the catalog collections."""
    if not lines:
        return lines
    products: Dict[str, Products] = {
        str(doc["_id"]): from_doc(Products, doc)
        for doc in database.products.find({"_id": {"$in": _object_ids(line.product_id for line in lines)}})
    }
    variants: Dict[str, ProductVariants] = {
        str(doc["_id"]): from_doc(ProductVariants, doc)
        for doc in database.product_variants.find({"_id": {"$in": _object_ids(line.variant_id for line in lines)}})
    }
    for line in lines:
        line.product = products.get(line.product_id)
        line.variant = variants.get(line.variant_id)
    return lines


class ServerCartStore:
    def __init__(self, database, user_id: str):
        self.db = database
        self.user_id = user_id

    @property
    def collection(self):
        return self.db[COLLECTION]

    def list(self, with_details: bool = True) -> List[CartItems]:
        lines = [from_doc(CartItems, doc) for doc in self.collection.find({"user_id": self.user_id}).sort("created_at", 1)]
        if with_details:
            attach_catalog(self.db, lines)
        return lines

    def find_by_variant(self, variant_id: str) -> Optional[CartItems]:
        doc = self.collection.find_one({"user_id": self.user_id, "variant_id": variant_id})
        return from_doc(CartItems, doc) if doc else None

    def insert(self, product_id: str, variant_id: str, quantity: int) -> CartItems:
        line = CartItems(user_id=self.user_id, product_id=product_id, variant_id=variant_id, quantity=quantity)
        line.id = create_document(COLLECTION, line.model_dump(exclude={"id", "product", "variant"}), self.db)
        return line

    def set_quantity(self, item_id: str, quantity: int) -> None:
        res = self.collection.update_one(
            {"_id": to_obj_id(item_id), "user_id": self.user_id},
            {"$set": {"quantity": quantity, "updated_at": utc_now()}},
        )
        if res.matched_count == 0:
            raise CartLineNotFoundError(item_id)

    def add(self, product_id: str, variant_id: str, quantity: int = 1) -> CartItems:
        existing = self.find_by_variant(variant_id)
        if existing:
            self.collection.update_one(
                {"_id": to_obj_id(existing.id)},
                {"$inc": {"quantity": quantity}, "$set": {"updated_at": utc_now()}},
            )
            existing.quantity += quantity
            return existing
        return self.insert(product_id, variant_id, quantity)

    def remove(self, item_id: str) -> None:
        res = self.collection.delete_one({"_id": to_obj_id(item_id), "user_id": self.user_id})
        if res.deleted_count == 0:
            raise CartLineNotFoundError(item_id)

    def clear(self) -> int:
        res = self.collection.delete_many({"user_id": self.user_id})
        return res.deleted_count
