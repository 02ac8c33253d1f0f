from datetime import datetime
from decimal import Decimal
from pydantic import AliasChoices, BaseModel, Field
from typing import List, Literal, Optional

from models.order import OrderStatus


class CheckoutItemIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(
        gt=0,
        max_digits=12,
        decimal_places=2,
        validation_alias=AliasChoices("unit_price", "price"),
    )
    name: str = Field(min_length=1, max_length=200)
    image: Optional[str] = None

    class Config:
        extra = "forbid"


class CheckoutRequest(BaseModel):
    items: List[CheckoutItemIn] = Field(min_length=1)
    shipping_address: str = Field(min_length=1, max_length=1000)

    class Config:
        extra = "forbid"


class CheckoutResponse(BaseModel):
    url: str
    access_code: Optional[str] = None
    reference: str
    items_total: float
    shipping_fee: float
    total: float


class OrderItemOut(BaseModel):
    id: Optional[int] = None
    product_id: Optional[int] = None
    name: str
    price: float
    quantity: int
    image: Optional[str] = None


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    payment_method: str
    currency: str
    total_amount: float
    shipping_fee: float
    is_paid: bool
    paid_at: Optional[datetime] = None
    is_shipped: bool
    shipped_at: Optional[datetime] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    status: str
    shipping_address: Optional[str] = None
    created_at: datetime
    items_source: Literal["normalized", "legacy_snapshot"]
    items: List[OrderItemOut]


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderSettingsOut(BaseModel):
    enabled: bool
    shipping_fee_percent: float

    class Config:
        from_attributes = True


class OrderSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    shipping_fee_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
