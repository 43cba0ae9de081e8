"""
Cart session.

A ``CartSession`` owns the in-memory cart for one browsing session. It is
created when the session starts, reads and writes the guest store while
nobody is signed in, switches to the server store once an identity is
present, and is torn down with ``sign_out``.

Signing in with a non-empty guest cart runs ``merge_guest_cart``: every
guest line is folded into the user's server rows one at a time, the guest
store is emptied and the cart is reloaded from the server. The merge is
best effort. A line that fails is logged and skipped, and the guest store
is cleared regardless, so that line is lost. The ``merging`` flag only
stops re-entry within this session object; two sessions signing in for
the same user at the same time can both merge.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from errors import InvalidQuantityError
from guest_cart import GuestCart, is_guest_item_id
from pricing import CartTotals, cart_totals
from schemas import CartItems
from server_cart import ServerCartStore, attach_catalog

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    merged: int = 0
    failed: List[str] = field(default_factory=list)


class CartSession:
    def __init__(self, database, guest_cart: Optional[GuestCart] = None, user_id: Optional[str] = None):
        self.db = database
        self.guest_cart = guest_cart if guest_cart is not None else GuestCart()
        self.user_id = user_id
        self.items: List[CartItems] = []
        self.merging = False
        self.initialized = False

    # -----------------------------
    # Totals
    # -----------------------------

    @property
    def totals(self) -> CartTotals:
        return cart_totals(self.items)

    @property
    def subtotal(self) -> float:
        return self.totals.subtotal

    def is_empty(self) -> bool:
        return not self.items

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def start(self) -> "CartSession":
        if self.user_id and not self.guest_cart.is_empty():
            logger.info("Found guest cart to merge for user %s", self.user_id)
            self.merge_guest_cart()
        else:
            self.refresh()
        self.initialized = True
        return self

    def sign_in(self, user_id: str) -> MergeResult:
        """Switch to ``user_id``; merges the guest cart on a new identity."""
        if self.user_id == user_id:
            return MergeResult()
        self.user_id = user_id
        if self.guest_cart.is_empty():
            self.refresh()
            return MergeResult()
        return self.merge_guest_cart()

    def sign_out(self) -> None:
        logger.info("Tearing down cart session for user %s", self.user_id)
        self.user_id = None
        self.merging = False
        self.refresh()

    def refresh(self) -> List[CartItems]:
        if self.user_id:
            self.items = self._server_store().list()
        else:
            self.items = attach_catalog(self.db, self.guest_cart.load())
        return self.items

    # -----------------------------
    # Line operations
    # -----------------------------

    def add_item(self, product_id: str, variant_id: str, quantity: int = 1) -> List[CartItems]:
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        if self.user_id:
            self._server_store().add(product_id, variant_id, quantity)
        else:
            self.guest_cart.add(product_id, variant_id, quantity)
        return self.refresh()

    def update_quantity(self, item_id: str, quantity: int) -> List[CartItems]:
        if quantity <= 0:
            return self.remove_item(item_id)
        if self.user_id and not is_guest_item_id(item_id):
            self._server_store().set_quantity(item_id, quantity)
        else:
            self.guest_cart.update_quantity(item_id, quantity)
        return self.refresh()

    def remove_item(self, item_id: str) -> List[CartItems]:
        if self.user_id and not is_guest_item_id(item_id):
            self._server_store().remove(item_id)
        else:
            self.guest_cart.remove(item_id)
        return self.refresh()

    def clear(self) -> None:
        if self.user_id:
            removed = self._server_store().clear()
            logger.info("Cleared %d cart rows for user %s", removed, self.user_id)
        self.guest_cart.clear()
        self.items = []

    # -----------------------------
    # Guest -> user reconciliation
    # -----------------------------

    def merge_guest_cart(self) -> MergeResult:
        result = MergeResult()
        if not self.user_id or self.merging:
            return result

        guest_lines = self.guest_cart.load()
        if not guest_lines:
            return result

        self.merging = True
        try:
            logger.info("Merging guest cart with user cart: %d items", len(guest_lines))
            store = self._server_store()
            for line in guest_lines:
                try:
                    existing = store.find_by_variant(line.variant_id)
                    if existing:
                        store.set_quantity(existing.id, existing.quantity + line.quantity)
                    else:
                        store.insert(line.product_id, line.variant_id, line.quantity)
                    result.merged += 1
                except Exception:
                    result.failed.append(line.variant_id)
                    logger.exception("Failed to merge guest cart line for variant %s", line.variant_id)

            self.guest_cart.clear()
            if result.failed:
                logger.warning("Guest cart merged with %d failed lines", len(result.failed))
            else:
                logger.info("Guest cart merged successfully")
            self.refresh()
        finally:
            self.merging = False
        return result

    def _server_store(self) -> ServerCartStore:
        return ServerCartStore(self.db, self.user_id)
