"""
Order aggregate builder: validate a client cart and price it.

Nothing is written here. Stock is checked but not reserved, so abandoned
checkouts never lock inventory.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import InsufficientStock, PriceMismatch, ProductNotFound, ValidationError
from models.product import Product
from models.user import User
from schemas.order import CheckoutItemIn
from services.inventory import has_sufficient_stock

CENT = Decimal("0.01")


def _to_decimal(value: float | int | str | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def effective_price(product: Product) -> Decimal:
    discount = _to_decimal(product.discount_percentage or 0)
    return quantize_money(_to_decimal(product.price) * (Decimal("1") - discount / Decimal("100")))


@dataclass(frozen=True)
class DraftLine:
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    image: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderDraft:
    user_id: int
    lines: List[DraftLine] = field(default_factory=list)
    items_total: Decimal = Decimal("0.00")
    shipping_fee: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return self.items_total + self.shipping_fee


def compute_shipping_fee(items_total: Decimal, percent: Decimal | float | int | None) -> Decimal:
    pct = _to_decimal(percent or 0)
    if pct < 0:
        raise ValidationError("Shipping fee percentage cannot be negative")
    return quantize_money(items_total * pct / Decimal("100"))


def build_draft(
    db: Session,
    user: User,
    items: Iterable[CheckoutItemIn],
    shipping_fee_percent: Decimal | float | int | None = 0,
) -> OrderDraft:
    """
    Validate every line against the catalog and compute totals.

    Fails as a whole on the first offending item with ``ProductNotFound``,
    ``InsufficientStock`` or (when server prices are enforced)
    ``PriceMismatch``.
    """
    items = list(items)
    if not items:
        raise ValidationError("No order items")

    product_ids = {item.product_id for item in items}
    products_map = {
        p.id: p for p in db.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    # Quantities are summed per product so split lines cannot dodge the stock check
    requested: "OrderedDict[int, int]" = OrderedDict()
    for item in items:
        product = products_map.get(item.product_id)
        if product is None or not product.is_active:
            raise ProductNotFound(item.product_id, item.name)
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    for product_id, quantity in requested.items():
        product = products_map[product_id]
        if not has_sufficient_stock(product, quantity):
            raise InsufficientStock(product.id, product.name)

    lines: List[DraftLine] = []
    items_total = Decimal("0.00")
    for item in items:
        product = products_map[item.product_id]
        unit_price = quantize_money(_to_decimal(item.unit_price))
        if settings.ENFORCE_SERVER_PRICES:
            expected = effective_price(product)
            if unit_price != expected:
                raise PriceMismatch(product.id, product.name, unit_price, expected)
        line = DraftLine(
            product_id=product.id,
            name=item.name,
            unit_price=unit_price,
            quantity=item.quantity,
            image=item.image,
        )
        items_total += line.line_total
        lines.append(line)

    items_total = quantize_money(items_total)
    return OrderDraft(
        user_id=user.id,
        lines=lines,
        items_total=items_total,
        shipping_fee=compute_shipping_fee(items_total, shipping_fee_percent),
    )
