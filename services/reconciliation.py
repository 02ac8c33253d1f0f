"""
Order reconciliation pipeline.

Drives a paid checkout through

    IntentCreated -> PaymentConfirmed -> OrderMaterialized -> StockAdjusted -> Notified

with ``Aborted`` as the failure state. The signed Paystack webhook is the
only signal that may mark an order paid. Deliveries are at-least-once and
may arrive out of order, so every event is checked against the payment
reference before anything is written, and the unique constraint on
``orders.payment_reference`` settles a race between two deliveries of the
same event.
"""
import enum
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.db import retry_on_disconnect
from core.errors import InvalidSignature, PersistenceFailure
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from models.user import User
from schemas.payment import IntentMetadata
from services import inventory
from services import notifications
from services.delivery import confirm_delivery_url, generate_delivery_token
from services.email import send_templated_email
from services.order_builder import quantize_money
from services.paystack import CHARGE_SUCCESS, to_minor_units, verify_webhook

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_ATTEMPTS = 8
# After this many collisions on 3-digit codes, switch to 6 digits
ORDER_NUMBER_NARROW_ATTEMPTS = 5


class PipelineStage(str, enum.Enum):
    INTENT_CREATED = "intent_created"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ORDER_MATERIALIZED = "order_materialized"
    STOCK_ADJUSTED = "stock_adjusted"
    NOTIFIED = "notified"
    ABORTED = "aborted"


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def http_status(self) -> int:
        if self is WebhookOutcome.REJECTED:
            return 400
        if self is WebhookOutcome.FAILED:
            return 500
        return 200


OUTCOME_MESSAGES = {
    WebhookOutcome.PROCESSED: "Order processed",
    WebhookOutcome.ALREADY_PROCESSED: "Order already processed",
    WebhookOutcome.IGNORED: "Event received",
    WebhookOutcome.REJECTED: "Webhook Error: invalid signature",
    WebhookOutcome.FAILED: "Webhook failed",
}


@dataclass
class ReconciliationResult:
    outcome: WebhookOutcome
    stage: PipelineStage
    reference: Optional[str] = None
    order_id: Optional[int] = None
    soft_inconsistencies: List[inventory.StockAdjustment] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        return self.outcome.http_status

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]


def handle_webhook(db: Session, raw_payload: bytes, signature_header: str | None) -> ReconciliationResult:
    """Entry point for the webhook transport: verify, then reconcile."""
    try:
        event = verify_webhook(raw_payload, signature_header)
    except InvalidSignature as exc:
        logger.warning("SECURITY: rejected payment webhook: %s", exc.detail)
        return ReconciliationResult(WebhookOutcome.REJECTED, PipelineStage.INTENT_CREATED)
    return reconcile_event(db, event)


def parse_metadata(raw: Any) -> IntentMetadata:
    # Paystack echoes metadata back as an object, older dashboards as a JSON string
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("metadata is not an object")
    return IntentMetadata.model_validate(raw)


def find_order_by_reference(db: Session, reference: str) -> Optional[Order]:
    return db.query(Order).filter(Order.payment_reference == reference).one_or_none()


def reconcile_event(db: Session, event: Dict[str, Any]) -> ReconciliationResult:
    """Process an already verified event."""
    event_type = event.get("event")
    data = event.get("data") or {}
    reference = data.get("reference")

    if event_type != CHARGE_SUCCESS or data.get("status") != "success":
        logger.info("Ignoring payment event %s (%s) for %s", event_type, data.get("status"), reference)
        return ReconciliationResult(WebhookOutcome.IGNORED, PipelineStage.INTENT_CREATED, reference)
    if not reference:
        logger.error("Successful charge event without a reference, cannot reconcile")
        return ReconciliationResult(WebhookOutcome.IGNORED, PipelineStage.INTENT_CREATED)

    try:
        metadata = parse_metadata(data.get("metadata"))
    except (PydanticValidationError, ValueError) as exc:
        # Paid but unusable: needs manual follow-up, retrying cannot fix it
        logger.error("Payment %s succeeded with unusable metadata: %s", reference, exc)
        return ReconciliationResult(WebhookOutcome.IGNORED, PipelineStage.PAYMENT_CONFIRMED, reference)

    try:
        existing = retry_on_disconnect(db, lambda: find_order_by_reference(db, reference))
    except SQLAlchemyError:
        logger.exception("Idempotency lookup failed for payment %s", reference)
        return ReconciliationResult(WebhookOutcome.FAILED, PipelineStage.ABORTED, reference)
    if existing is not None:
        logger.info("Payment %s already reconciled as order %s", reference, existing.order_number)
        return ReconciliationResult(WebhookOutcome.ALREADY_PROCESSED, PipelineStage.NOTIFIED, reference, existing.id)

    try:
        order, adjustments = materialize_order(
            db,
            reference,
            metadata,
            paid_amount=data.get("amount"),
            currency=data.get("currency"),
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_order_by_reference(db, reference)
        if existing is not None:
            logger.info("Payment %s reconciled concurrently as order %s", reference, existing.order_number)
            return ReconciliationResult(WebhookOutcome.ALREADY_PROCESSED, PipelineStage.NOTIFIED, reference, existing.id)
        logger.exception("Integrity error while materializing payment %s", reference)
        return ReconciliationResult(WebhookOutcome.FAILED, PipelineStage.ABORTED, reference)
    except Exception:
        db.rollback()
        logger.exception("Materializing payment %s failed, rolled back", reference)
        return ReconciliationResult(WebhookOutcome.FAILED, PipelineStage.ABORTED, reference)

    logger.info("Payment %s materialized as order %s", reference, order.order_number)
    soft = [adj for adj in adjustments if not adj.applied]
    dispatch_side_effects(db, order, metadata, adjustments)
    return ReconciliationResult(WebhookOutcome.PROCESSED, PipelineStage.NOTIFIED, reference, order.id, soft)


def generate_order_number(db: Session, attempts: int = ORDER_NUMBER_ATTEMPTS) -> str:
    """``ORD`` plus a random 3-digit code, checked for collisions before use."""
    for attempt in range(attempts):
        digits = 3 if attempt < ORDER_NUMBER_NARROW_ATTEMPTS else 6
        low = 10 ** (digits - 1)
        candidate = f"{ORDER_NUMBER_PREFIX}{low + secrets.randbelow(9 * low)}"
        taken = db.query(Order.id).filter(Order.order_number == candidate).first()
        if taken is None:
            return candidate
    raise PersistenceFailure("Could not allocate an order number")


def materialize_order(
    db: Session,
    reference: str,
    metadata: IntentMetadata,
    paid_amount: int | None = None,
    currency: str | None = None,
) -> Tuple[Order, List[inventory.StockAdjustment]]:
    """
    Insert the paid order, its items and the stock decrements in the
    caller's transaction. Does not commit.
    """
    items_total = sum((line.unit_price * line.quantity for line in metadata.items), Decimal("0"))
    shipping_fee = quantize_money(metadata.shipping_fee)
    total_amount = quantize_money(items_total) + shipping_fee

    if paid_amount is not None and int(paid_amount) != to_minor_units(total_amount):
        logger.warning(
            "Payment %s amount %s does not match order total %s (%s minor units)",
            reference, paid_amount, total_amount, to_minor_units(total_amount),
        )

    user = db.get(User, metadata.user_id)
    if user is None:
        # The payment went through; keep the order even if the account is gone
        logger.error("Payment %s references missing user %s", reference, metadata.user_id)

    order = Order(
        order_number=generate_order_number(db),
        user_id=user.id if user else None,
        payment_method="paystack",
        currency=(currency or settings.PAYSTACK_CURRENCY)[:3],
        total_amount=total_amount,
        shipping_fee=shipping_fee,
        is_paid=True,
        paid_at=datetime.utcnow(),
        status=OrderStatus.PROCESSING.value,
        shipping_address=metadata.shipping_address,
        cart_items=metadata.model_dump(mode="json")["items"],
        payment_reference=reference,
        delivery_token=generate_delivery_token(),
    )
    db.add(order)
    db.flush()

    adjustments: List[inventory.StockAdjustment] = []
    for line in metadata.items:
        adjustment = inventory.decrement(db, line.product_id, line.quantity)
        if not adjustment.applied:
            # Payment cannot be undone; stock stays non-negative and an admin reconciles
            logger.warning(
                "Soft inconsistency on order %s: product %s %s for quantity %s",
                order.order_number, line.product_id, adjustment.outcome.value, line.quantity,
            )
        adjustments.append(adjustment)

        # A product deleted since checkout keeps its snapshot line without the link
        product_id = None if adjustment.outcome == inventory.StockOutcome.NOT_FOUND else line.product_id
        db.add(
            OrderItem(
                order_id=order.id,
                product_id=product_id,
                name=line.name,
                price=line.unit_price,
                quantity=line.quantity,
                image=line.image,
            )
        )

    db.flush()
    return order, adjustments


def _best_effort(description: str, db: Session, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except Exception:
        db.rollback()
        logger.exception("%s failed", description)
        return None


def dispatch_side_effects(
    db: Session,
    order: Order,
    metadata: IntentMetadata,
    adjustments: List[inventory.StockAdjustment],
) -> None:
    """Notifications and emails after commit. Failures are logged, never raised."""
    customer = db.get(User, order.user_id) if order.user_id else None
    customer_name = customer.name if customer else "Customer"
    items = [line.model_dump(mode="json") for line in metadata.items]

    if customer is not None:
        _best_effort(
            f"Customer notification for order {order.order_number}", db,
            notifications.emit, db, notifications.ORDER_CONFIRMATION,
            {"id": order.id, "order_number": order.order_number},
            user_id=customer.id,
            title="Order Confirmed",
            message=f"Your order {order.order_number} has been received.",
        )

    _best_effort(
        f"Admin notification for order {order.order_number}", db,
        notifications.emit, db, notifications.ORDER,
        {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": customer_name,
            "items": items,
            "shipping_fee": str(order.shipping_fee),
        },
        title="New Order Received",
        message=f"Order {order.order_number} placed.",
    )

    names = {line.product_id: line.name for line in metadata.items}
    for adjustment in adjustments:
        if adjustment.outcome == inventory.StockOutcome.DECREMENTED and adjustment.remaining is not None:
            _best_effort(
                f"Low stock notification for product {adjustment.product_id}", db,
                notifications.emit_low_stock, db, adjustment.product_id,
                names.get(adjustment.product_id, str(adjustment.product_id)), adjustment.remaining,
            )

    context = {
        "customer_name": customer_name,
        "order_number": order.order_number,
        "shipping_address": order.shipping_address,
        "items": items,
        "currency": order.currency,
        "shipping_fee": f"{order.shipping_fee:.2f}",
        "total_amount": f"{order.total_amount:.2f}",
        "confirm_delivery_url": confirm_delivery_url(order),
    }
    if customer is not None:
        _best_effort(
            f"Confirmation email for order {order.order_number}", db,
            send_templated_email, customer.email,
            f"{settings.STORE_NAME} Order {order.order_number}",
            "emails/order_confirmation.html", context,
        )

    admin_emails = _best_effort(
        "Admin lookup", db,
        lambda: [row.email for row in db.query(User.email).filter(User.is_admin.is_(True)).all()],
    ) or []
    for admin_email in admin_emails:
        _best_effort(
            f"Admin email for order {order.order_number}", db,
            send_templated_email, admin_email,
            f"New Order: {order.order_number}",
            "emails/admin_new_order.html", context,
        )
