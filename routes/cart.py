from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, selectinload

from core.db import get_db
from models.cart import Cart, CartItem
from models.product import Product
from models.user import User
from routes.auth import get_current_user
from schemas.cart import CartItemAdd, CartItemUpdate, CartItemOut, CartOut
from services.order_builder import quantize_money

router = APIRouter(prefix="/cart", tags=["cart"])


def _get_cart(db: Session, user: User) -> Cart | None:
    return (
        db.query(Cart)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
        .filter(Cart.user_id == user.id)
        .one_or_none()
    )


def _get_or_create_cart(db: Session, user: User) -> Cart:
    cart = _get_cart(db, user)
    if cart is None:
        cart = Cart(user_id=user.id)
        db.add(cart)
        db.flush()
    return cart


def _get_own_item(db: Session, user: User, item_id: int) -> CartItem:
    item = (
        db.query(CartItem)
        .join(Cart, Cart.id == CartItem.cart_id)
        .filter(CartItem.id == item_id, Cart.user_id == user.id)
        .one_or_none()
    )
    if not item:
        raise HTTPException(status_code=404, detail="Item not found in cart")
    return item


def _item_out(item: CartItem) -> CartItemOut:
    discount = Decimal(item.discount_percentage or 0)
    discounted = quantize_money(item.price * (1 - discount / 100))
    product = item.product
    return CartItemOut(
        item_id=item.id,
        product_id=item.product_id,
        name=product.name if product else "",
        quantity=item.quantity,
        price=float(item.price),
        discount_percentage=float(discount),
        discounted_price=float(discounted),
        stock=product.stock if product else None,
        image_url=product.image_url if product else None,
    )


@router.get("", response_model=CartOut)
def get_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart = _get_cart(db, current_user)
    if cart is None:
        return CartOut(items=[], total_products=0)
    items = sorted(cart.items, key=lambda i: i.id)
    return CartOut(items=[_item_out(i) for i in items], total_products=sum(i.quantity for i in items))


@router.post("/items", response_model=CartItemOut, status_code=201)
def add_item(data: CartItemAdd, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    product = db.get(Product, data.product_id)
    if not product or not product.is_active:
        raise HTTPException(status_code=404, detail="Product not found")

    cart = _get_or_create_cart(db, current_user)
    item = db.query(CartItem).filter(CartItem.cart_id == cart.id, CartItem.product_id == product.id).one_or_none()
    if item:
        item.quantity += data.quantity
    else:
        # Price and discount are captured at add time
        item = CartItem(
            cart_id=cart.id,
            product_id=product.id,
            quantity=data.quantity,
            price=product.price,
            discount_percentage=product.discount_percentage or 0,
        )
        db.add(item)
    db.commit()
    db.refresh(item)
    return _item_out(item)


@router.patch("/items/{item_id}", response_model=CartItemOut)
def update_item(
    item_id: int,
    data: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = _get_own_item(db, current_user, item_id)
    item.quantity = data.quantity
    db.commit()
    db.refresh(item)
    return _item_out(item)


@router.delete("/items/{item_id}")
def remove_item(item_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    item = _get_own_item(db, current_user, item_id)
    db.delete(item)
    db.commit()
    return {"detail": "Item removed from cart"}


@router.delete("")
def clear_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart = db.query(Cart).filter(Cart.user_id == current_user.id).one_or_none()
    if cart is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    db.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session=False)
    db.commit()
    return {"detail": "Cart cleared"}
