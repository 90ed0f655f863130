from pydantic import BaseModel, Discriminator, Field, AliasChoices, Tag
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from commerce.domain.models import MAX_QUANTITY, MovementType, PaymentMethod

# --- Order placement ----------------------------------------------------

class CatalogLineItem(BaseModel):
    """A line that references a product in the catalog; price and stock come from the product."""
    kind: Literal["catalog"] = "catalog"
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=1, le=MAX_QUANTITY)

class AdHocLineItem(BaseModel):
    """A catalog-less line (promotional or ad-hoc item); no stock is tracked for it."""
    kind: Literal["ad_hoc"] = "ad_hoc"
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    quantity: int = Field(ge=1, le=MAX_QUANTITY)
    description: Optional[str] = None
    category: str = "tea"
    weight: str = "100g"
    image_url: Optional[list[str]] = None

def line_item_kind(value: Any) -> Optional[str]:
    """An explicit ``kind`` wins; otherwise a line with a product id is a catalog line."""
    if isinstance(value, dict):
        if value.get("kind"):
            return value["kind"]
        return "catalog" if value.get("product_id") is not None else "ad_hoc"
    return getattr(value, "kind", None)

LineItem = Annotated[
    Union[Annotated[CatalogLineItem, Tag("catalog")], Annotated[AdHocLineItem, Tag("ad_hoc")]],
    Discriminator(line_item_kind),
]

class ShippingAddress(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(
        min_length=1, max_length=20,
        validation_alias=AliasChoices("postal_code", "pincode"),
    )
    country: Optional[str] = None

class ContactInfo(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    phone: str = Field(pattern=r"^\+?[0-9]{10,15}$")

class OrderCreate(BaseModel):
    items: list[LineItem]
    shipping_address: ShippingAddress
    contact: ContactInfo
    payment_method: PaymentMethod
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    # When given, must match the total computed from the lines
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=2000)

class PlacedOrder(BaseModel):
    order_id: UUID
    order_number: str
    status: str

# --- Order reads -------------------------------------------------------

class OrderLineItemRead(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    product_description: Optional[str] = None
    category: str
    weight: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    image_url: Optional[list[str]] = None
    class Config:
        from_attributes = True

class ShippingAddressRead(BaseModel):
    name: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str

class OrderRead(BaseModel):
    id: UUID
    order_number: str
    status: str
    payment_method: str
    payment_status: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    shipping_address: ShippingAddressRead
    contact_email: str
    contact_phone: str
    order_notes: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderLineItemRead]

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int

class OrderPage(BaseModel):
    data: list[OrderRead]
    pagination: Pagination

class TrackingRead(BaseModel):
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    total_amount: Decimal
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: datetime
    shipped_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    shipping_city: str
    shipping_state: str
    customer_name: str
    items: list[OrderLineItemRead]

# --- Notifications -----------------------------------------------------

class NoticeItem(BaseModel):
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

class OrderNotice(BaseModel):
    """Detached copy of a committed order, safe to use after the session closes."""
    order_id: UUID
    order_number: str
    status: str
    created_at: datetime
    payment_method: str
    customer_name: str
    shipping_name: str
    shipping_lines: list[str]
    contact_email: str
    contact_phone: str
    items: list[NoticeItem]
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal

# --- Stock ledger ------------------------------------------------------

class Actor(BaseModel):
    user_id: Optional[int] = None
    name: str = "System"

class MovementRequest(BaseModel):
    product_id: int
    movement_type: MovementType
    quantity_delta: int
    reason: str = Field(min_length=1, max_length=255)
    actor: Actor = Actor()
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    is_automated: bool = False

class MovementResult(BaseModel):
    movement_id: int
    product_id: int
    product_name: str
    movement_type: MovementType
    quantity_delta: int
    previous_stock: int
    new_stock: int

class MovementOutcome(BaseModel):
    """Per-request outcome of a bulk ledger call."""
    product_id: int
    success: bool
    message: Optional[str] = None
    result: Optional[MovementResult] = None

# --- Admin stock adjustment -------------------------------------------

AdjustmentType = Literal["add", "remove", "set"]

class StockAdjustment(BaseModel):
    adjustment_type: AdjustmentType
    quantity: int = Field(ge=0, le=MAX_QUANTITY)
    reason: str = Field(min_length=1, max_length=255)

class BulkStockAdjustmentItem(BaseModel):
    # Loosely typed on purpose: bad rows are reported per item, not rejected wholesale
    product_id: Union[int, str]
    adjustment_type: str
    quantity: Union[int, str]

class BulkStockAdjustment(BaseModel):
    updates: list[BulkStockAdjustmentItem]
    reason: str = Field(default="Bulk update", min_length=1, max_length=255)

class AdjustmentResult(BaseModel):
    product_id: int
    product_name: str
    adjustment_type: str
    previous_stock: int
    new_stock: int
    adjustment: int

class BulkItemResult(BaseModel):
    product_id: Union[int, str]
    success: bool
    message: Optional[str] = None
    product_name: Optional[str] = None
    previous_stock: Optional[int] = None
    new_stock: Optional[int] = None
    adjustment: Optional[int] = None

class BulkAdjustmentReport(BaseModel):
    results: list[BulkItemResult]
    total: int
    success_count: int
    failure_count: int

# --- Inventory reads ---------------------------------------------------

class StockMovementRead(BaseModel):
    id: int
    product_id: int
    product_name: str
    movement_type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    reference_id: Optional[str] = None
    user_id: Optional[int] = None
    user_name: str
    notes: Optional[str] = None
    is_automated: bool
    created_at: datetime
    class Config:
        from_attributes = True

class StockHistoryPage(BaseModel):
    movements: list[StockMovementRead]
    total: int
    limit: int
    offset: int
    pages: int
