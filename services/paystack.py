import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

import requests

from core.config import settings
from core.errors import InvalidSignature, PaymentGatewayError
from models.user import User
from services.order_builder import OrderDraft

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"
SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS = "charge.success"


@dataclass(frozen=True)
class CheckoutIntent:
    authorization_url: str
    access_code: str | None
    reference: str


def _headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
        "Content-Type": "application/json",
    }


def to_minor_units(amount: Decimal) -> int:
    # Paystack amounts are in kobo/pesewas/cents
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def new_reference() -> str:
    return str(uuid.uuid4())


def initialize_transaction(email: str, amount: Decimal, reference: str | None = None, callback_url: str | None = None, metadata: Dict[str, Any] | None = None) -> Dict[str, Any]:
    ref = reference or new_reference()
    payload = {
        "email": email,
        "amount": to_minor_units(amount),
        "currency": settings.PAYSTACK_CURRENCY,
        "reference": ref,
    }
    if callback_url or settings.PAYSTACK_CALLBACK_URL:
        payload["callback_url"] = callback_url or settings.PAYSTACK_CALLBACK_URL
    if metadata:
        payload["metadata"] = metadata

    resp = requests.post(f"{PAYSTACK_BASE_URL}/transaction/initialize", json=payload, headers=_headers(), timeout=20)
    resp.raise_for_status()
    return resp.json()


def build_intent_metadata(draft: OrderDraft, shipping_address: str) -> Dict[str, Any]:
    """Metadata that lets the webhook rebuild the order on its own. Money travels as strings."""
    return {
        "user_id": draft.user_id,
        "shipping_address": shipping_address,
        "shipping_fee": str(draft.shipping_fee),
        "items": [
            {
                "product_id": line.product_id,
                "name": line.name,
                "unit_price": str(line.unit_price),
                "quantity": line.quantity,
                "image": line.image,
            }
            for line in draft.lines
        ],
    }


def create_intent(user: User, draft: OrderDraft, shipping_address: str, callback_url: str | None = None) -> CheckoutIntent:
    """Open a hosted checkout for the draft total. Nothing is stored locally."""
    reference = new_reference()
    try:
        resp = initialize_transaction(
            email=user.email,
            amount=draft.total,
            reference=reference,
            callback_url=callback_url,
            metadata=build_intent_metadata(draft, shipping_address),
        )
    except requests.RequestException as exc:
        logger.error("Paystack initialize failed for user %s: %s", user.id, exc)
        raise PaymentGatewayError() from exc

    if not resp.get("status"):
        raise PaymentGatewayError(resp.get("message", "Unable to initialize payment"))

    data = resp.get("data") or {}
    if not data.get("authorization_url"):
        raise PaymentGatewayError("Missing authorization url from provider")

    logger.info("Checkout intent %s opened for user %s (total %s)", data.get("reference", reference), user.id, draft.total)
    return CheckoutIntent(
        authorization_url=data["authorization_url"],
        access_code=data.get("access_code"),
        reference=data.get("reference") or reference,
    )


def compute_signature(raw_payload: bytes, secret: str | None = None) -> str:
    key = (secret if secret is not None else settings.PAYSTACK_SECRET_KEY).encode()
    return hmac.new(key, raw_payload, hashlib.sha512).hexdigest()


def verify_webhook(raw_payload: bytes, signature_header: str | None) -> Dict[str, Any]:
    """
    Authenticate a webhook body and return the parsed event.

    Fails closed: no secret configured, missing header, signature mismatch
    or a body that is not a JSON object all raise ``InvalidSignature``.
    """
    if not settings.PAYSTACK_SECRET_KEY:
        raise InvalidSignature("Webhook secret is not configured")
    if not signature_header:
        raise InvalidSignature("Missing signature header")

    expected = compute_signature(raw_payload)
    if not hmac.compare_digest(expected, signature_header.strip().lower()):
        raise InvalidSignature()

    try:
        event = json.loads(raw_payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise InvalidSignature("Malformed webhook payload") from exc
    if not isinstance(event, dict) or "event" not in event:
        raise InvalidSignature("Malformed webhook payload")
    return event
