from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional


class IntentLineItem(BaseModel):
    product_id: int
    name: str
    unit_price: Decimal = Field(gt=0)
    quantity: int = Field(gt=0)
    image: Optional[str] = None


class IntentMetadata(BaseModel):
    """Everything needed to rebuild an order from a payment event alone."""

    user_id: int
    items: List[IntentLineItem] = Field(min_length=1)
    shipping_address: str
    shipping_fee: Decimal = Field(default=Decimal("0.00"), ge=0)


class WebhookAck(BaseModel):
    detail: str
    outcome: str
    order_id: Optional[int] = None
