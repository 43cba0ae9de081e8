"""
Guest cart persistence.

Anonymous shoppers keep their cart in browser-local key-value storage.
``GuestCart`` holds the same shape: a JSON list of lines under the
``guest_cart`` key of whatever storage it is given.
"""
import json
import logging
import time
from typing import List, Optional

from pydantic import ValidationError

from database import utc_now
from errors import CartLineNotFoundError
from schemas import CartItems

logger = logging.getLogger(__name__)

GUEST_CART_KEY = "guest_cart"
GUEST_USER_ID = "guest"
GUEST_ID_PREFIX = "guest_"


class MemoryStorage:
    """Key-value storage with the localStorage interface, kept in a dict."""

    def __init__(self, initial: Optional[dict] = None):
        self._data = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


def is_guest_item_id(item_id: str) -> bool:
    return item_id.startswith(GUEST_ID_PREFIX)


class GuestCart:
    def __init__(self, storage=None, key: str = GUEST_CART_KEY):
        self.storage = storage if storage is not None else MemoryStorage()
        self.key = key

    def load(self) -> List[CartItems]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return []
        try:
            rows = json.loads(raw)
            return [CartItems.model_validate(row) for row in rows]
        except (ValueError, TypeError, ValidationError) as e:
            logger.error('Error parsing guest cart key "%s": %s', self.key, e)
            return []

    def save(self, lines: List[CartItems]) -> None:
        payload = [line.model_dump(mode="json", exclude={"product", "variant"}) for line in lines]
        self.storage.set_item(self.key, json.dumps(payload))

    def clear(self) -> None:
        self.storage.set_item(self.key, "[]")

    def is_empty(self) -> bool:
        return not self.load()

    def add(self, product_id: str, variant_id: str, quantity: int = 1) -> List[CartItems]:
        lines = self.load()
        for line in lines:
            if line.variant_id == variant_id:
                line.quantity += quantity
                line.updated_at = utc_now()
                break
        else:
            now = utc_now()
            lines.append(CartItems(
                id=f"{GUEST_ID_PREFIX}{int(time.time() * 1000)}_{variant_id}",
                user_id=GUEST_USER_ID,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                created_at=now,
                updated_at=now,
            ))
        self.save(lines)
        return lines

    def update_quantity(self, item_id: str, quantity: int) -> List[CartItems]:
        if quantity <= 0:
            return self.remove(item_id)
        lines = self.load()
        line = self._find(lines, item_id)
        line.quantity = quantity
        line.updated_at = utc_now()
        self.save(lines)
        return lines

    def remove(self, item_id: str) -> List[CartItems]:
        lines = self.load()
        self._find(lines, item_id)
        lines = [line for line in lines if line.id != item_id]
        self.save(lines)
        return lines

    @staticmethod
    def _find(lines: List[CartItems], item_id: str) -> CartItems:
        for line in lines:
            if line.id == item_id:
                return line
        raise CartLineNotFoundError(item_id)
