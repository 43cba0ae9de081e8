"""
Checkout wizard.

Three steps: address, payment method, review. Completing a step moves the
pointer forward by one; going back only moves the pointer and keeps what
was entered. ``place_order`` is only allowed from the review step.

The cart is cleared once the order is settled: straight away for cash on
delivery, after a verified payment for online orders. A failed or
abandoned online payment leaves the cart as it was so the customer can
retry.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from cart import CartSession
from coupons import apply_coupon, evaluate_coupon
from errors import CheckoutStepError, EmptyCartError, PaymentGatewayError
from orders import OrderService
from payments import RazorpayClient
from pricing import OrderQuote, build_quote
from schemas import Coupons, OrderCreate, OrderItemCreate, Orders, ShippingAddress
from settings import PricingSettings

logger = logging.getLogger(__name__)

STEP_ADDRESS = 1
STEP_PAYMENT = 2
STEP_REVIEW = 3

PAYMENT_METHODS = ("online", "cod")


def success_redirect(order: Orders) -> str:
    return f"/orders?success=true&order={order.order_number}"


def failure_redirect(order: Orders) -> str:
    return f"/orders/{order.id}?payment=failed"


@dataclass
class CheckoutResult:
    order: Orders
    action: str  # "confirmed" | "pay" | "payment_failed"
    redirect_url: Optional[str] = None
    payment: Optional[dict] = None
    cart_cleared: bool = False

    def as_dict(self) -> dict:
        return {
            "action": self.action,
            "redirect_url": self.redirect_url,
            "payment": self.payment,
            "cart_cleared": self.cart_cleared,
            "order": {
                "id": self.order.id,
                "order_number": self.order.order_number,
                "total_amount": self.order.total_amount,
                "payment_method": self.order.payment_method,
                "payment_status": self.order.payment_status,
            },
        }


class CheckoutSession:
    def __init__(self, cart: CartSession, orders: OrderService, gateway: RazorpayClient,
                 pricing: PricingSettings, customer_email: str):
        self.cart = cart
        self.orders = orders
        self.gateway = gateway
        self.pricing = pricing
        self.customer_email = customer_email
        self.current_step = STEP_ADDRESS
        self.address: Optional[ShippingAddress] = None
        self.payment_method = "online"
        self.coupon: Optional[Coupons] = None

    # -----------------------------
    # Steps
    # -----------------------------

    def select_address(self, address: ShippingAddress) -> int:
        self.address = address
        self.current_step = STEP_PAYMENT
        return self.current_step

    def select_payment_method(self, method: str) -> int:
        if self.current_step < STEP_PAYMENT:
            raise CheckoutStepError("Please select a delivery address")
        if method not in PAYMENT_METHODS:
            raise CheckoutStepError(f"Invalid payment method: {method}")
        self.payment_method = method
        self.current_step = STEP_REVIEW
        return self.current_step

    def go_back(self, step: int) -> int:
        if step < STEP_ADDRESS or step > self.current_step:
            raise CheckoutStepError(f"Cannot move from step {self.current_step} to step {step}")
        self.current_step = step
        return self.current_step

    # -----------------------------
    # Pricing
    # -----------------------------

    def apply_coupon(self, code: str) -> float:
        coupon, discount = apply_coupon(self.cart.db, code, self.cart.subtotal)
        self.coupon = coupon
        return discount

    def remove_coupon(self) -> None:
        self.coupon = None

    def coupon_discount(self) -> float:
        if self.coupon is None:
            return 0.0
        # the cart may have changed since the code was applied
        result = evaluate_coupon(self.coupon, self.cart.subtotal)
        if not result.applicable:
            logger.info("Dropping coupon %s: %s", self.coupon.code, result.reason)
            self.coupon = None
            return 0.0
        return result.discount

    def quote(self) -> OrderQuote:
        discount = self.coupon_discount()
        return build_quote(
            self.cart.subtotal,
            self.payment_method,
            self.pricing,
            coupon_code=self.coupon.code if self.coupon else None,
            coupon_discount=discount,
        )

    # -----------------------------
    # Placing the order
    # -----------------------------

    def build_order(self, quote: OrderQuote) -> OrderCreate:
        address = self.address
        items = []
        for line in self.cart.items:
            product = line.product
            variant = line.variant
            unit_price = product.unit_price if product else 0.0
            items.append(OrderItemCreate(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=product.name if product else line.product_id,
                product_image=product.featured_image if product else None,
                size=variant.size if variant else "",
                color=variant.color if variant else "",
                quantity=line.quantity,
                unit_price=unit_price,
                total_price=round(unit_price * line.quantity, 2),
            ))
        return OrderCreate(
            user_id=self.cart.user_id,
            payment_method=self.payment_method,
            customer_name=address.full_name,
            customer_email=self.customer_email,
            customer_phone=address.phone,
            shipping_address_line_1=address.address_line_1,
            shipping_address_line_2=address.address_line_2,
            shipping_city=address.city,
            shipping_state=address.state,
            shipping_postal_code=address.postal_code,
            shipping_country=address.country,
            subtotal=quote.subtotal,
            discount_amount=quote.discount_amount,
            applied_delivery_fee=quote.delivery_fee,
            total_amount=quote.total_amount,
            coupon_code=quote.coupon_code,
            coupon_discount=quote.coupon_discount,
            items=items,
        )

    def place_order(self) -> CheckoutResult:
        if self.current_step != STEP_REVIEW:
            raise CheckoutStepError("Review your order before placing it")
        if self.address is None:
            raise CheckoutStepError("Please select a delivery address")
        if self.cart.is_empty():
            raise EmptyCartError()

        quote = self.quote()
        order = self.orders.create(self.build_order(quote))

        if self.payment_method == "cod":
            self.cart.clear()
            return CheckoutResult(order, "confirmed", redirect_url=success_redirect(order), cart_cleared=True)

        if order.total_amount <= 0:
            # nothing to collect online
            order = self.orders.update_payment_status(order.id, "paid")
            self.cart.clear()
            return CheckoutResult(order, "confirmed", redirect_url=success_redirect(order), cart_cleared=True)

        try:
            gateway_order = self.gateway.create_order(
                order.total_amount,
                receipt=order.order_number,
                notes={"order_id": order.id},
            )
        except PaymentGatewayError:
            logger.exception("Could not start payment for order %s", order.order_number)
            order = self.orders.update_payment_status(order.id, "failed")
            return CheckoutResult(order, "payment_failed", redirect_url=failure_redirect(order))

        self.orders.attach_gateway_order(order.id, gateway_order["id"])
        order = self.orders.get(order.id)
        payment = {
            "key_id": self.gateway.public_key,
            "order": gateway_order,
            "prefill": {
                "name": order.customer_name,
                "email": order.customer_email,
                "contact": order.customer_phone,
            },
        }
        return CheckoutResult(order, "pay", payment=payment)

    def confirm_payment(self, razorpay_order_id: str, razorpay_payment_id: str,
                        razorpay_signature: str) -> CheckoutResult:
        order = self.orders.get_by_gateway_order(razorpay_order_id)
        if order.payment_status == "paid":
            return CheckoutResult(order, "confirmed", redirect_url=success_redirect(order))

        if not self.gateway.verify_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
            logger.warning("Payment verification failed for order %s", order.order_number)
            if order.payment_status == "pending":
                order = self.orders.update_payment_status(order.id, "failed", razorpay_payment_id)
            return CheckoutResult(order, "payment_failed", redirect_url=failure_redirect(order))

        order = self.orders.update_payment_status(order.id, "paid", razorpay_payment_id)
        self.cart.clear()
        logger.info("Payment verified for order %s", order.order_number)
        return CheckoutResult(order, "confirmed", redirect_url=success_redirect(order), cart_cleared=True)
