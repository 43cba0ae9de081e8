"""
Coupon evaluation.

``evaluate_coupon`` is pure: it never touches the store and never bumps
``used_count``. Order creation is what records a use.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from database import as_utc, utc_now
from errors import CouponNotApplicableError, CouponNotFoundError
from pricing import money
from schemas import Coupons, from_doc

logger = logging.getLogger(__name__)

INACTIVE = "inactive"
EXPIRED = "expired"
USAGE_LIMIT_REACHED = "usage_limit_reached"
BELOW_MINIMUM = "below_minimum"


@dataclass
class CouponEvaluation:
    discount: float = 0.0
    reason: Optional[str] = None
    message: str = ""

    @property
    def applicable(self) -> bool:
        return self.reason is None


def evaluate_coupon(coupon: Coupons, subtotal: float, now: Optional[datetime] = None) -> CouponEvaluation:
    now = as_utc(now or utc_now())

    if not coupon.is_active:
        return CouponEvaluation(reason=INACTIVE, message="This coupon is no longer active.")
    if coupon.expires_at is not None and as_utc(coupon.expires_at) < now:
        return CouponEvaluation(reason=EXPIRED, message="This coupon has expired.")
    # a limit of 0 means unlimited
    if coupon.usage_limit and coupon.used_count >= coupon.usage_limit:
        return CouponEvaluation(reason=USAGE_LIMIT_REACHED, message="This coupon has reached its usage limit.")
    if coupon.min_order_amount > subtotal:
        return CouponEvaluation(
            reason=BELOW_MINIMUM,
            message=f"Minimum order amount is {coupon.min_order_amount:g} to use this coupon.",
        )

    if coupon.discount_type == "percentage":
        discount = subtotal * coupon.discount_value / 100
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = coupon.discount_value

    return CouponEvaluation(discount=money(discount), message=f"Coupon applied! You saved {money(discount):g}")


def find_coupon(database, code: str) -> Coupons:
    normalized = (code or "").strip().upper()
    doc = database.coupons.find_one({"code": normalized}) if normalized else None
    if not doc:
        raise CouponNotFoundError(normalized)
    return from_doc(Coupons, doc)


def apply_coupon(database, code: str, subtotal: float, now: Optional[datetime] = None):
    """Look a code up and evaluate it, returning ``(coupon, discount)``."""
    coupon = find_coupon(database, code)
    result = evaluate_coupon(coupon, subtotal, now=now)
    if not result.applicable:
        logger.info("Coupon %s rejected: %s", coupon.code, result.reason)
        raise CouponNotApplicableError(coupon.code, result.reason, result.message)
    return coupon, result.discount
