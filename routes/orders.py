import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import OrderingDisabled
from models.user import User
from routes.auth import get_current_user, require_admin
from schemas.order import (
    CheckoutRequest,
    CheckoutResponse,
    OrderOut,
    OrderSettingsOut,
    OrderSettingsUpdate,
    OrderStatusUpdate,
)
from services import delivery
from services import orders as order_service
from services import paystack
from services.order_builder import build_draft

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=CheckoutResponse, status_code=201)
def create_checkout(
    data: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Validate the cart and open a Paystack checkout. Nothing is persisted:
    the order only comes into existence when the payment webhook arrives.
    """
    order_settings = order_service.get_order_settings(db)
    if not order_settings.enabled:
        raise OrderingDisabled()

    draft = build_draft(db, current_user, data.items, order_settings.shipping_fee_percent)
    intent = paystack.create_intent(current_user, draft, data.shipping_address)
    return CheckoutResponse(
        url=intent.authorization_url,
        access_code=intent.access_code,
        reference=intent.reference,
        items_total=float(draft.items_total),
        shipping_fee=float(draft.shipping_fee),
        total=float(draft.total),
    )


@router.get("", response_model=List[OrderOut])
def list_all_orders(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return [order_service.serialize_order(o) for o in order_service.list_orders(db)]


# Static paths are declared before /{order_id}
@router.get("/mine", response_model=List[OrderOut])
def list_my_orders(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [order_service.serialize_order(o) for o in order_service.list_orders(db, user_id=current_user.id)]


@router.get("/settings", response_model=OrderSettingsOut)
def get_settings(db: Session = Depends(get_db)):
    return order_service.get_order_settings(db)


@router.put("/settings", response_model=OrderSettingsOut)
def update_settings(data: OrderSettingsUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    row = order_service.get_order_settings(db)
    if data.enabled is not None:
        row.enabled = data.enabled
    if data.shipping_fee_percent is not None:
        row.shipping_fee_percent = data.shipping_fee_percent
    db.commit()
    db.refresh(row)
    logger.info("Order settings updated by %s: enabled=%s fee=%s%%", admin.id, row.enabled, row.shipping_fee_percent)
    return row


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.serialize_order(order_service.get_order_for(db, order_id, current_user))


@router.put("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return order_service.serialize_order(order_service.update_status(db, order_id, data.status))


@router.put("/{order_id}/mark-received", response_model=OrderOut)
def mark_received(order_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.serialize_order(delivery.mark_received(db, order_id, current_user))


@router.get("/{order_id}/confirm-delivery")
def confirm_delivery(order_id: int, token: str = Query(default=""), db: Session = Depends(get_db)):
    order = delivery.confirm_delivery(db, order_id, token)
    return {"detail": "Order marked as delivered", "order_number": order.order_number}


@router.delete("/{order_id}")
def delete_order(order_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order_service.delete_order(db, order_id)
    return {"detail": "Order deleted successfully"}
