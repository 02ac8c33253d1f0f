import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List

from core.db import get_db
from models.product import Product
from models.user import User
from routes.auth import require_admin
from schemas.product import ProductCreate, ProductUpdate, ProductOut
from services import notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _notify_if_low(db: Session, product: Product) -> None:
    if product.unlimited_stock or product.stock is None:
        return
    try:
        notifications.emit_low_stock(db, product.id, product.name, product.stock)
    except Exception:
        logger.exception("Low stock notification for product %s failed", product.id)


@router.get("/", response_model=List[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return db.query(Product).filter(Product.is_active.is_(True)).order_by(Product.id).all()


@router.get("/search", response_model=List[ProductOut])
def search_products(q: str = Query(min_length=1, max_length=100), db: Session = Depends(get_db)):
    pattern = f"%{q.strip()}%"
    return (
        db.query(Product)
        .filter(Product.is_active.is_(True), Product.name.ilike(pattern))
        .order_by(Product.name)
        .all()
    )


@router.post("/", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    product = Product(
        name=data.name,
        description=data.description,
        price=data.price,
        discount_percentage=data.discount_percentage,
        stock=None if data.unlimited_stock else data.stock,
        unlimited_stock=data.unlimited_stock,
        image_url=data.image_url,
        is_active=True,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _get_product_or_404(db, product_id)


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int, data: ProductUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    product = _get_product_or_404(db, product_id)

    if data.name is not None:
        product.name = data.name
    if data.price is not None:
        product.price = data.price
    if data.discount_percentage is not None:
        product.discount_percentage = data.discount_percentage
    if data.unlimited_stock is not None:
        product.unlimited_stock = data.unlimited_stock
    if data.stock is not None:
        product.stock = data.stock
    if data.description is not None:
        product.description = data.description
    if data.image_url is not None:
        product.image_url = data.image_url
    if data.is_active is not None:
        product.is_active = data.is_active

    db.commit()
    db.refresh(product)

    if data.stock is not None:
        _notify_if_low(db, product)
    return product


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    product = _get_product_or_404(db, product_id)
    db.delete(product)
    db.commit()
    return None
