"""
Database Schemas

MongoDB collection schemas and request bodies, as Pydantic models.
Each stored model represents a collection in the database; the model name
lowercased is the collection name. Request bodies accept camelCase keys
(as sent by the mobile app and admin panel) as well as snake_case.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

OrderStatus = Literal[
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "refunded",
]
PaymentMethod = Literal["card", "apple", "google", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Catalog
# -----------------------------
class ProductVariant(CamelModel):
    type: Literal["size", "color"]
    value: str
    price_modifier: float = 0
    stock: int = Field(0, ge=0)


class ProductVariants(CamelModel):
    sizes: List[ProductVariant] = Field(default_factory=list)
    colors: List[ProductVariant] = Field(default_factory=list)


class ProductImage(CamelModel):
    url: str
    alt: str = ""
    is_default: bool = False


class Product(CamelModel):
    name: str = Field(..., max_length=200)
    description: str = Field("", max_length=5000)
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None
    images: List[ProductImage] = Field(default_factory=list)
    variants: ProductVariants = Field(default_factory=ProductVariants)
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)


# -----------------------------
# Orders
# -----------------------------
class OrderItem(CamelModel):
    """Snapshot of a product at the moment it was ordered."""

    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: str = ""
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


class ShippingAddress(CamelModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = "USA"


class StatusHistoryEntry(CamelModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class PaymentInfo(CamelModel):
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class Order(CamelModel):
    order_number: Optional[str] = None
    user_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    status: OrderStatus = "pending"
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    coupon_code: Optional[str] = None
    shipping: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    notes: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)


class OrderItemIn(CamelModel):
    product: str
    quantity: int = Field(..., ge=1)
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


class OrderCreate(CamelModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None


class AdminOrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    note: Optional[str] = Field(None, description="Recorded on the status history entry")


# -----------------------------
# Reviews
# -----------------------------
class Review(CamelModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = Field(default_factory=list)
    is_verified_purchase: bool = False
    helpful_votes: int = Field(0, ge=0)
    is_approved: bool = True


class ReviewCreate(CamelModel):
    product: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = Field(default_factory=list)


class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)


class ReviewApproval(CamelModel):
    is_approved: bool
