"""
Database Schemas for the storefront

Each Pydantic model represents a collection in MongoDB. Rows read back
from the store are validated through these models (``from_doc``) before
they reach cart, coupon or order logic.
"""
import re
from datetime import datetime
from typing import List, Optional, Literal, Type, TypeVar

from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator

from database import serialize_doc

PaymentMethod = Literal["online", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
DiscountType = Literal["percentage", "fixed"]

M = TypeVar("M", bound=BaseModel)


def from_doc(model: Type[M], doc: dict) -> M:
    return model.model_validate(serialize_doc(doc))


def generate_slug(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


# -----------------------------
# Catalog
# -----------------------------

class Categories(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    slug: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    display_order: int = 0

    @model_validator(mode="after")
    def fill_slug(self):
        if not self.slug:
            self.slug = generate_slug(self.name)
        return self


class Products(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    slug: str = ""
    description: Optional[str] = None
    specifications: Optional[str] = None
    category_id: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    is_featured: bool = False
    is_trending: bool = False
    is_hot_sale: bool = False
    is_active: bool = True
    featured_image: Optional[str] = None
    image_urls: List[str] = []

    @model_validator(mode="after")
    def fill_slug(self):
        if not self.slug:
            self.slug = generate_slug(self.name)
        return self

    @property
    def unit_price(self) -> float:
        # a zero discount price means "no discount"
        return self.discount_price or self.price


class ProductVariants(BaseModel):
    id: Optional[str] = None
    product_id: str
    size: str
    color: str
    color_code: Optional[str] = None
    stock_quantity: int = Field(0, ge=0)
    sku: Optional[str] = None
    image_url: Optional[str] = None


class Banners(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image_url: str
    link_url: Optional[str] = None
    is_active: bool = True
    display_order: int = 0


class SiteSettings(BaseModel):
    id: Optional[str] = None
    key: str = Field(..., min_length=1)
    value: Optional[str] = None
    description: Optional[str] = None


# -----------------------------
# Cart
# -----------------------------

class CartItems(BaseModel):
    id: Optional[str] = None
    user_id: str
    product_id: str
    variant_id: str
    quantity: int = Field(..., ge=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    product: Optional[Products] = None
    variant: Optional[ProductVariants] = None


# -----------------------------
# Coupons
# -----------------------------

class Coupons(BaseModel):
    id: Optional[str] = None
    code: str = Field(..., min_length=1)
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    is_active: bool = True
    expires_at: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


# -----------------------------
# Orders
# -----------------------------

class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str = "India"


class OrderItemCreate(BaseModel):
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: str
    product_image: Optional[str] = None
    size: str = ""
    color: str = ""
    quantity: int
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)


class OrderItems(OrderItemCreate):
    id: Optional[str] = None
    order_id: str
    created_at: Optional[datetime] = None


class OrderCreate(BaseModel):
    user_id: Optional[str] = None
    payment_method: PaymentMethod
    customer_name: str
    customer_email: EmailStr
    customer_phone: str = ""
    shipping_address_line_1: str
    shipping_address_line_2: Optional[str] = None
    shipping_city: str
    shipping_state: str
    shipping_postal_code: str
    shipping_country: str = "India"
    subtotal: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    applied_delivery_fee: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    coupon_code: Optional[str] = None
    coupon_discount: float = Field(0, ge=0)
    items: List[OrderItemCreate] = []


class Orders(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    order_number: str
    status: OrderStatus = "pending"
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str = ""
    shipping_address_line_1: str
    shipping_address_line_2: Optional[str] = None
    shipping_city: str
    shipping_state: str
    shipping_postal_code: str
    shipping_country: str = "India"
    subtotal: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    applied_delivery_fee: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    coupon_code: Optional[str] = None
    coupon_discount: float = Field(0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    order_items: List[OrderItems] = []
