"""
Notification emitter for the admin feed and per-user notices.

Dedupe is check-then-insert against unread rows with the same type and
entity id. There is no unique constraint, so two concurrent emits can both
insert; a duplicate notice is tolerated.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.config import settings
from models.notification import Notification

logger = logging.getLogger(__name__)

STOCK = "stock"
ORDER = "order"
ORDER_CONFIRMATION = "order_confirmation"


def _entity_id(payload: Dict[str, Any] | None) -> Optional[str]:
    if not payload or payload.get("id") is None:
        return None
    return str(payload["id"])


def find_unread(db: Session, type_: str, entity_id: str) -> Optional[Notification]:
    return (
        db.query(Notification)
        .filter(
            Notification.type == type_,
            Notification.entity_id == entity_id,
            Notification.read.is_(False),
        )
        .first()
    )


def emit(
    db: Session,
    type_: str,
    payload: Dict[str, Any] | None = None,
    user_id: int | None = None,
    title: str = "",
    message: str = "",
    triggered_by: str = "System",
) -> Optional[Notification]:
    """
    Create a notification unless it is suppressed or already pending.

    ``user_id=None`` broadcasts to admins. Returns the new or existing
    record, or ``None`` for a suppressed stock notice. Commits on insert.
    """
    payload = payload or {}

    if type_ == STOCK:
        stock = payload.get("stock")
        if stock is not None and stock >= settings.LOW_STOCK_THRESHOLD:
            return None

    entity_id = _entity_id(payload)
    if entity_id is not None:
        existing = find_unread(db, type_, entity_id)
        if existing:
            return existing

    notification = Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        data=payload,
        entity_id=entity_id,
        read=False,
        triggered_by=triggered_by or "System",
    )
    db.add(notification)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to store %s notification for entity %s", type_, entity_id)
        raise
    db.refresh(notification)
    return notification


def emit_low_stock(db: Session, product_id: int, name: str, stock: int) -> Optional[Notification]:
    return emit(
        db,
        STOCK,
        {"id": product_id, "name": name, "stock": stock},
        title="Low Stock",
        message=f"{name} has only {stock} left in stock.",
    )
