"""
Inventory ledger.

Stock is only ever changed through a conditional UPDATE
(``SET stock = stock - q WHERE stock >= q``) so concurrent orders against
the same row cannot drive it below zero. There are no holds: stock is
checked at draft time (advisory) and enforced again when the paid order is
materialized (authoritative).
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.product import Product

logger = logging.getLogger(__name__)


class StockOutcome(str, enum.Enum):
    DECREMENTED = "decremented"
    UNLIMITED = "unlimited"
    INSUFFICIENT = "insufficient"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    quantity: int
    outcome: StockOutcome
    remaining: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.outcome in (StockOutcome.DECREMENTED, StockOutcome.UNLIMITED)


def has_sufficient_stock(product: Product, quantity: int) -> bool:
    if product.unlimited_stock:
        return True
    return product.stock is not None and product.stock >= quantity


def decrement(db: Session, product_id: int, quantity: int) -> StockAdjustment:
    """Conditionally take ``quantity`` units; never commits."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    unlimited = db.execute(
        select(Product.unlimited_stock).where(Product.id == product_id)
    ).scalar_one_or_none()
    if unlimited is None:
        return StockAdjustment(product_id, quantity, StockOutcome.NOT_FOUND)
    if unlimited:
        return StockAdjustment(product_id, quantity, StockOutcome.UNLIMITED)

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.unlimited_stock.is_(False),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
        .returning(Product.stock)
        .execution_options(synchronize_session="fetch")
    )
    remaining = db.execute(stmt).scalar_one_or_none()
    if remaining is None:
        return StockAdjustment(product_id, quantity, StockOutcome.INSUFFICIENT)

    logger.debug("Product %s stock decremented by %s, %s left", product_id, quantity, remaining)
    return StockAdjustment(product_id, quantity, StockOutcome.DECREMENTED, remaining)
