"""
Delivery confirmation.

The token is a capability: whoever holds it (it only travels in the
customer's emails) may mark that one order delivered without logging in.
"""
import hmac
import logging
import secrets
from datetime import datetime

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import AlreadyConfirmed, Forbidden, InvalidToken, NotFound
from models.order import Order, OrderStatus
from models.user import User

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_delivery_token() -> str:
    """256 bits of randomness, hex encoded."""
    return secrets.token_hex(TOKEN_BYTES)


def confirm_delivery_url(order: Order) -> str | None:
    if not order.delivery_token:
        return None
    return f"{settings.FRONTEND_URL}/orders/{order.id}/confirm-delivery?token={order.delivery_token}"


def _mark_delivered(order: Order) -> None:
    order.is_delivered = True
    order.status = OrderStatus.DELIVERED.value
    order.delivered_at = datetime.utcnow()


def confirm_delivery(db: Session, order_id: int, token: str | None) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.is_delivered:
        raise AlreadyConfirmed()
    if not token or not order.delivery_token or not hmac.compare_digest(order.delivery_token, token):
        logger.warning("Rejected delivery confirmation for order %s: token mismatch", order_id)
        raise InvalidToken()

    _mark_delivered(order)
    db.commit()
    db.refresh(order)
    logger.info("Order %s confirmed delivered by token", order.order_number)
    return order


def mark_received(db: Session, order_id: int, user: User) -> Order:
    """Signed-in owner (or an admin) marks the order as received."""
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.id and not user.is_admin:
        raise Forbidden("Order not found or not yours")
    if order.is_delivered:
        raise AlreadyConfirmed()

    _mark_delivered(order)
    db.commit()
    db.refresh(order)
    return order
