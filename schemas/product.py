from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    stock: Optional[int] = Field(default=0, ge=0)
    unlimited_stock: bool = False
    image_url: Optional[str] = None
    description: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    stock: Optional[int] = Field(default=None, ge=0)
    unlimited_stock: Optional[bool] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ProductOut(BaseModel):
    id: int
    name: str
    price: float
    discount_percentage: float
    stock: Optional[int] = None
    unlimited_stock: bool
    image_url: Optional[str] = None
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True
