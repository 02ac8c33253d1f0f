"""Order read model and admin lifecycle operations."""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Union

from sqlalchemy.orm import Session, selectinload

from core.config import settings
from core.errors import Forbidden, NotFound
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from models.order_settings import OrderSettings
from models.user import User
from services.delivery import confirm_delivery_url
from services.email import send_templated_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedItems:
    items: List[OrderItem]


@dataclass(frozen=True)
class LegacySnapshot:
    raw: List[Dict[str, Any]]


OrderLines = Union[NormalizedItems, LegacySnapshot]


def resolve_items(order: Order) -> OrderLines:
    """Prefer normalized rows; orders that predate them only have the cart snapshot."""
    if order.items:
        return NormalizedItems(list(order.items))
    raw = order.cart_items if isinstance(order.cart_items, list) else []
    return LegacySnapshot(raw)


def _line_out(lines: OrderLines) -> List[Dict[str, Any]]:
    if isinstance(lines, NormalizedItems):
        return [
            {
                "id": item.id,
                "product_id": item.product_id,
                "name": item.name,
                "price": float(item.price),
                "quantity": item.quantity,
                "image": item.image,
            }
            for item in lines.items
        ]
    return [
        {
            "product_id": raw.get("product_id"),
            "name": raw.get("name", ""),
            "price": float(raw.get("unit_price", raw.get("price", 0)) or 0),
            "quantity": int(raw.get("quantity", 0) or 0),
            "image": raw.get("image"),
        }
        for raw in lines.raw
    ]


def serialize_order(order: Order) -> Dict[str, Any]:
    lines = resolve_items(order)
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "payment_method": order.payment_method,
        "currency": order.currency,
        "total_amount": float(order.total_amount),
        "shipping_fee": float(order.shipping_fee or 0),
        "is_paid": order.is_paid,
        "paid_at": order.paid_at,
        "is_shipped": order.is_shipped,
        "shipped_at": order.shipped_at,
        "is_delivered": order.is_delivered,
        "delivered_at": order.delivered_at,
        "status": order.status,
        "shipping_address": order.shipping_address,
        "created_at": order.created_at,
        "items_source": "normalized" if isinstance(lines, NormalizedItems) else "legacy_snapshot",
        "items": _line_out(lines),
    }


def list_orders(db: Session, user_id: int | None = None) -> List[Order]:
    query = db.query(Order).options(selectinload(Order.items))
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order_for(db: Session, order_id: int, user: User) -> Order:
    order = db.get(Order, order_id)
    if order is None or (order.user_id != user.id and not user.is_admin):
        raise NotFound("Order not found or not yours")
    return order


def update_status(db: Session, order_id: int, status: OrderStatus) -> Order:
    """
    Admin status change. Flags follow the status, except that a delivered
    order stays delivered.
    """
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.is_delivered and status != OrderStatus.DELIVERED:
        raise Forbidden("Delivered orders cannot change status")

    now = datetime.utcnow()
    order.status = status.value
    if status == OrderStatus.SHIPPED and not order.is_shipped:
        order.is_shipped = True
        order.shipped_at = now
    if status == OrderStatus.DELIVERED and not order.is_delivered:
        order.is_delivered = True
        order.delivered_at = now
    db.commit()
    db.refresh(order)

    _send_status_email(order, status)
    return order


def _send_status_email(order: Order, status: OrderStatus) -> None:
    customer = order.user
    if customer is None:
        return
    try:
        send_templated_email(
            customer.email,
            f"Your Order #{order.order_number} is now {status.value}",
            "emails/order_status.html",
            {
                "customer_name": customer.name,
                "order_number": order.order_number,
                "status": status.value,
                "track_url": f"{settings.FRONTEND_URL}/orders/{order.id}",
                "confirm_delivery_url": confirm_delivery_url(order) if status == OrderStatus.SHIPPED else None,
            },
        )
    except Exception:
        logger.exception("Status email for order %s failed", order.order_number)


def delete_order(db: Session, order_id: int) -> None:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    order_number = order.order_number
    # ORM cascade removes the order items before the order row
    db.delete(order)
    db.commit()
    logger.info("Order %s deleted", order_number)


def get_order_settings(db: Session) -> OrderSettings:
    """The settings row is created lazily on first access."""
    row = db.query(OrderSettings).order_by(OrderSettings.id).first()
    if row is None:
        row = OrderSettings(enabled=True, shipping_fee_percent=Decimal(settings.DEFAULT_SHIPPING_FEE_PERCENT))
        db.add(row)
        db.commit()
        db.refresh(row)
    return row
