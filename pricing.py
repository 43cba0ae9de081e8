"""Pricing rules shared by the cart, checkout and order validation."""
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

from settings import PricingSettings


@dataclass
class CartTotals:
    subtotal: float
    total_items: int
    total_quantity: int


@dataclass
class OrderQuote:
    subtotal: float
    discount_amount: float
    coupon_code: Optional[str]
    coupon_discount: float
    delivery_fee: float
    total_amount: float

    def as_dict(self) -> dict:
        return asdict(self)


def money(value: float) -> float:
    return round(float(value), 2)


def cart_totals(items: Iterable) -> CartTotals:
    """Sum cart lines; lines without product details count as zero value."""
    subtotal = 0.0
    total_items = 0
    total_quantity = 0
    for item in items:
        total_items += 1
        total_quantity += item.quantity
        if item.product is None:
            continue
        subtotal += item.product.unit_price * item.quantity
    return CartTotals(subtotal=money(subtotal), total_items=total_items, total_quantity=total_quantity)


def delivery_fee(payment_method: str, subtotal: float, settings: PricingSettings) -> float:
    if payment_method == "online":
        return 0.0
    if subtotal >= settings.free_delivery_threshold:
        return 0.0
    return money(settings.delivery_fee)


def order_total(subtotal: float, discount_amount: float, coupon_discount: float, fee: float) -> float:
    return money(max(0.0, subtotal - discount_amount - coupon_discount + fee))


def build_quote(subtotal: float, payment_method: str, settings: PricingSettings,
                coupon_code: Optional[str] = None, coupon_discount: float = 0.0,
                discount_amount: float = 0.0) -> OrderQuote:
    fee = delivery_fee(payment_method, subtotal, settings)
    return OrderQuote(
        subtotal=money(subtotal),
        discount_amount=money(discount_amount),
        coupon_code=coupon_code,
        coupon_discount=money(coupon_discount),
        delivery_fee=fee,
        total_amount=order_total(subtotal, discount_amount, coupon_discount, fee),
    )
