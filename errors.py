"""Domain exceptions for the storefront."""
from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class InvalidIdError(StorefrontError):
    """Raised when a string cannot be used as a document id."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid id: {value}")


class RecordNotFoundError(StorefrontError):
    """Raised when a record doesn't exist in a collection."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


class CartLineNotFoundError(StorefrontError):
    """Raised when a cart line doesn't exist for the current owner."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Cart item not found: {item_id}")


class EmptyCartError(StorefrontError):
    """Raised when checking out with no cart lines."""

    def __init__(self):
        super().__init__("Cart is empty")


class CouponNotFoundError(StorefrontError):
    """Raised when no coupon matches a code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid coupon code. Please check and try again.")


class CouponNotApplicableError(StorefrontError):
    """Raised when a coupon exists but cannot be applied to the order."""

    def __init__(self, code: str, reason: str, message: str):
        self.code = code
        self.reason = reason
        super().__init__(message)


class InvalidOrderError(StorefrontError):
    """Raised when order data fails validation."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class VariantNotFoundError(StorefrontError):
    """Raised when an order line references a missing product variant."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Product variant not found for {product_name}")


class InsufficientStockError(StorefrontError):
    """Raised when a variant has fewer units than requested."""

    def __init__(self, product_name: str, available: int, requested: int):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        )


class OrderCreationError(StorefrontError):
    """Raised when the order or its items could not be written."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class OrderNotFoundError(StorefrontError):
    """Raised when an order doesn't exist or no order matches a lookup."""

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        super().__init__(f"Order not found: {order_ref}")


class OrderAccessDeniedError(StorefrontError):
    """Raised when a user asks for an order that belongs to someone else."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Unauthorized access to this order")


class InvalidStatusTransitionError(StorefrontError):
    """Raised when an order status change is not allowed."""

    def __init__(self, field: str, current: str, requested: str):
        self.field = field
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change {field} from '{current}' to '{requested}'")


class CheckoutStepError(StorefrontError):
    """Raised when a checkout action is taken out of step order."""

    def __init__(self, message: str):
        super().__init__(message)


class PaymentGatewayError(StorefrontError):
    """Raised when the payment gateway rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(f"Payment gateway error: {message}")


class PaymentVerificationError(StorefrontError):
    """Raised when a payment signature does not verify."""

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        super().__init__("Invalid payment signature")


class InvalidQuantityError(StorefrontError):
    """Raised when a cart quantity is not a positive integer."""

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be at least 1, got {quantity}")
