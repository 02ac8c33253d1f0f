from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.db import get_db
from models.product import Product
from models.user import User
from models.wishlist import Wishlist, WishlistItem
from routes.auth import get_current_user
from schemas.wishlist import WishlistItemAdd, WishlistItemOut

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


def _item_out(item: WishlistItem) -> WishlistItemOut:
    product = item.product
    return WishlistItemOut(
        item_id=item.id,
        product_id=product.id,
        name=product.name,
        quantity=item.quantity,
        price=float(product.price),
        discount_percentage=float(product.discount_percentage or 0),
        stock=product.stock,
    )


def _get_wishlist_or_404(db: Session, user: User) -> Wishlist:
    wishlist = db.query(Wishlist).filter(Wishlist.user_id == user.id).one_or_none()
    if wishlist is None:
        raise HTTPException(status_code=404, detail="Wishlist not found")
    return wishlist


@router.get("", response_model=List[WishlistItemOut])
def get_wishlist(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    items = (
        db.query(WishlistItem)
        .join(Wishlist, Wishlist.id == WishlistItem.wishlist_id)
        .join(Product, Product.id == WishlistItem.product_id)
        .filter(Wishlist.user_id == current_user.id)
        .order_by(WishlistItem.id)
        .all()
    )
    return [_item_out(i) for i in items]


@router.post("", response_model=WishlistItemOut)
def add_to_wishlist(data: WishlistItemAdd, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    product = db.get(Product, data.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    wishlist = db.query(Wishlist).filter(Wishlist.user_id == current_user.id).one_or_none()
    if wishlist is None:
        wishlist = Wishlist(user_id=current_user.id)
        db.add(wishlist)
        db.flush()

    item = (
        db.query(WishlistItem)
        .filter(WishlistItem.wishlist_id == wishlist.id, WishlistItem.product_id == product.id)
        .one_or_none()
    )
    if item:
        item.quantity += data.quantity
    else:
        item = WishlistItem(wishlist_id=wishlist.id, product_id=product.id, quantity=data.quantity)
        db.add(item)
    db.commit()
    db.refresh(item)
    return _item_out(item)


# Declared before /{product_id} so "clear" is not parsed as an id
@router.delete("/clear")
def clear_wishlist(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wishlist = _get_wishlist_or_404(db, current_user)
    db.query(WishlistItem).filter(WishlistItem.wishlist_id == wishlist.id).delete(synchronize_session=False)
    db.commit()
    return {"detail": "Wishlist cleared"}


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wishlist = _get_wishlist_or_404(db, current_user)
    db.query(WishlistItem).filter(
        WishlistItem.wishlist_id == wishlist.id, WishlistItem.product_id == product_id
    ).delete(synchronize_session=False)
    db.commit()
    return {"detail": "Product removed from wishlist"}
