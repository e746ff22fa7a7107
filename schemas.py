"""
Database Schemas for the Scent Shop order service

Each Pydantic model represents a MongoDB collection or an embedded document.
The collection name is the lowercase of the class name (e.g., Order -> "order").
API bodies use camelCase (customerInfo, selectedSize, ...); stored documents
and Python code use snake_case.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES: List[str] = list(get_args(OrderStatus))

CANCELLABLE_STATUSES = ("pending", "confirmed")
REFUND_WINDOW_DAYS = 30

PaymentMethod = Literal["credit-card", "paypal", "apple-pay", "google-pay", "bank-transfer"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Catalog


class ProductSize(CamelModel):
    size: str
    price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    available: bool = True


class Product(CamelModel):
    """
    Products collection schema
    Collection name: "product"
    """
    id: Optional[str] = Field(None, description="Document id, assigned by the store")
    name: str = Field(..., description="Product name")
    description: Optional[str] = None
    price: float = Field(0, ge=0)
    category: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    sku: Optional[str] = None
    stock: int = Field(0, ge=0, description="General stock when no size is selected")
    sizes: List[ProductSize] = Field(default_factory=list)
    is_active: bool = Field(True, description="Inactive products cannot be ordered")

    @field_validator("sizes")
    @classmethod
    def unique_sizes(cls, v: List[ProductSize]) -> List[ProductSize]:
        labels = [s.size for s in v]
        if len(labels) != len(set(labels)):
            raise ValueError("Size labels must be unique within a product")
        return v

    def find_size(self, size: str) -> Optional[ProductSize]:
        for entry in self.sizes:
            if entry.size == size:
                return entry
        return None


# Order sections


class CustomerInfo(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str
    address: str
    city: str
    state: Optional[str] = None
    zip_code: str
    country: str = "United States"

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class PaymentInfo(CamelModel):
    """Payment details as submitted. Never persisted as-is."""
    method: PaymentMethod
    card_number: Optional[str] = None
    card_name: Optional[str] = None
    expiry_date: Optional[str] = None
    cvv: Optional[str] = None


class StoredPaymentInfo(CamelModel):
    method: PaymentMethod
    card_last_four: Optional[str] = Field(None, pattern=r"^\d{4}$")
    card_name: Optional[str] = None
    payment_status: Literal["pending", "completed", "failed", "refunded"] = "pending"


class ShippingOption(CamelModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    days: str = Field(..., description="Delivery timeframe, e.g. '3-5'")
    description: Optional[str] = None


class Pricing(CamelModel):
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    total: float = Field(..., ge=0)


class OrderItemRequest(CamelModel):
    """A requested line item. The product may be referenced as productId, _id or id."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    product_id: Optional[str] = None
    mongo_id: Optional[str] = Field(None, alias="_id")
    id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    quantity: int = Field(1, ge=1)
    selected_size: Optional[str] = None


class OrderItem(CamelModel):
    """Immutable snapshot of a purchased line, decoupled from the live product."""
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    selected_size: Optional[str] = None
    subtotal: float = Field(..., ge=0)


class StatusChange(CamelModel):
    status: OrderStatus
    timestamp: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None


class Order(CamelModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_number: str
    user_id: Optional[str] = None
    customer_info: CustomerInfo
    items: List[OrderItem] = Field(..., min_length=1)
    payment_info: StoredPaymentInfo
    shipping_option: ShippingOption
    pricing: Pricing
    promo_code: Optional[str] = None
    status: OrderStatus = "pending"
    status_history: List[StatusChange] = Field(default_factory=list)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Derived, returned by the API but never stored

    @computed_field
    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @computed_field
    @property
    def formatted_order_number(self) -> str:
        """ORD123456789 -> ORD-123456-789"""
        return re.sub(r"^(.{3})(.{6})(.{3})", r"\1-\2-\3", self.order_number)

    @computed_field
    @property
    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    @computed_field
    @property
    def can_be_refunded(self) -> bool:
        """Delivered, and within the refund window of the delivery date when known."""
        if self.status != "delivered":
            return False
        if self.actual_delivery_date is None:
            return True
        return utcnow() - self.actual_delivery_date <= timedelta(days=REFUND_WINDOW_DAYS)

    def to_document(self) -> Dict:
        return self.model_dump(exclude=set(type(self).model_computed_fields))


# Requests / responses


class OrderCreateRequest(CamelModel):
    """Checkout body. Sections are optional here so the coordinator can report
    which one is missing."""
    customer_info: Optional[CustomerInfo] = None
    items: Optional[List[OrderItemRequest]] = None
    payment_info: Optional[PaymentInfo] = None
    shipping_option: Optional[ShippingOption] = None
    pricing: Optional[Pricing] = None
    promo_code: Optional[str] = None


class OrderConfirmation(CamelModel):
    order_number: str
    status: OrderStatus
    total: float
    created_at: datetime


class StatusUpdateRequest(CamelModel):
    status: str
    note: Optional[str] = None


class BulkStatusUpdateRequest(CamelModel):
    order_numbers: List[str] = Field(..., min_length=1)
    status: str


class TrackingUpdateRequest(CamelModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_prev: bool


class StatusTotals(CamelModel):
    count: int
    total_amount: float


class OrderPage(CamelModel):
    orders: List[Order]
    pagination: Pagination


class OrderListing(OrderPage):
    by_status: Dict[str, StatusTotals] = Field(default_factory=dict)
    total_revenue: float = 0


class DailyStatusTotals(CamelModel):
    date: str
    status: str
    count: int
    total_amount: float


class OrderStatistics(CamelModel):
    timeframe_stats: List[DailyStatusTotals]
    overall_stats: Dict[str, StatusTotals]
    recent_orders: List[Order]
    total_revenue: float
    total_orders: int
