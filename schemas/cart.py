from pydantic import BaseModel, Field
from typing import List, Optional


class CartItemAdd(BaseModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(gt=0)


class CartItemOut(BaseModel):
    item_id: int
    product_id: int
    name: str
    quantity: int
    price: float
    discount_percentage: float
    discounted_price: float
    stock: Optional[int] = None
    image_url: Optional[str] = None


class CartOut(BaseModel):
    items: List[CartItemOut]
    total_products: int
