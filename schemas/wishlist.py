from pydantic import BaseModel, Field
from typing import Optional


class WishlistItemAdd(BaseModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)


class WishlistItemOut(BaseModel):
    item_id: int
    product_id: int
    name: str
    quantity: int
    price: float
    discount_percentage: float
    stock: Optional[int] = None
