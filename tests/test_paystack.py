import json
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from core.errors import InvalidSignature, PaymentGatewayError
from services import paystack
from services.order_builder import DraftLine, OrderDraft


@pytest.fixture
def draft(customer):
    line = DraftLine(product_id=1, name="Widget", unit_price=Decimal("10.00"), quantity=2)
    return OrderDraft(user_id=customer.id, lines=[line], items_total=Decimal("20.00"), shipping_fee=Decimal("1.00"))


def _provider_response(payload):
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status = Mock()
    return response


class TestCreateIntent:
    """Paystack transaction initialization"""

    @patch("services.paystack.requests.post")
    def test_success(self, mock_post, customer, draft):
        mock_post.return_value = _provider_response({
            "status": True,
            "data": {"authorization_url": "https://checkout.paystack.com/abc", "access_code": "abc", "reference": "ref-1"},
        })

        intent = paystack.create_intent(customer, draft, "12 Marina Road")

        assert intent.authorization_url == "https://checkout.paystack.com/abc"
        assert intent.reference == "ref-1"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["amount"] == 2100
        assert payload["email"] == customer.email
        assert payload["currency"] == "NGN"
        metadata = payload["metadata"]
        assert metadata["user_id"] == customer.id
        assert metadata["shipping_fee"] == "1.00"
        assert metadata["items"][0]["unit_price"] == "10.00"
        assert metadata["shipping_address"] == "12 Marina Road"

    @patch("services.paystack.requests.post")
    def test_every_intent_gets_a_fresh_reference(self, mock_post, customer, draft):
        mock_post.return_value = _provider_response({
            "status": True,
            "data": {"authorization_url": "https://checkout.paystack.com/x"},
        })

        first = paystack.create_intent(customer, draft, "addr")
        second = paystack.create_intent(customer, draft, "addr")
        assert first.reference != second.reference

    @patch("services.paystack.requests.post")
    def test_network_failure(self, mock_post, customer, draft):
        mock_post.side_effect = requests.ConnectionError("down")
        with pytest.raises(PaymentGatewayError):
            paystack.create_intent(customer, draft, "addr")

    @patch("services.paystack.requests.post")
    def test_provider_refusal(self, mock_post, customer, draft):
        mock_post.return_value = _provider_response({"status": False, "message": "Invalid key"})
        with pytest.raises(PaymentGatewayError) as exc:
            paystack.create_intent(customer, draft, "addr")
        assert exc.value.detail == "Invalid key"

    def test_minor_units(self):
        assert paystack.to_minor_units(Decimal("21.00")) == 2100
        assert paystack.to_minor_units(Decimal("0.015")) == 2


class TestVerifyWebhook:
    """Signature checks on the raw body"""

    def test_valid_signature(self, signed):
        raw, signature = signed({"event": "charge.success", "data": {"reference": "r"}})
        event = paystack.verify_webhook(raw, signature)
        assert event["data"]["reference"] == "r"

    def test_wrong_secret(self, signed):
        raw, signature = signed({"event": "charge.success", "data": {}}, secret="sk_other")
        with pytest.raises(InvalidSignature):
            paystack.verify_webhook(raw, signature)

    def test_tampered_body(self, signed):
        raw, signature = signed({"event": "charge.success", "data": {"amount": 100}})
        tampered = raw.replace(b"100", b"1")
        with pytest.raises(InvalidSignature):
            paystack.verify_webhook(tampered, signature)

    def test_missing_header(self, signed):
        raw, _ = signed({"event": "charge.success"})
        with pytest.raises(InvalidSignature):
            paystack.verify_webhook(raw, None)

    @patch("services.paystack.settings")
    def test_fails_closed_without_secret(self, mock_settings, signed):
        mock_settings.PAYSTACK_SECRET_KEY = ""
        raw, signature = signed({"event": "charge.success"})
        with pytest.raises(InvalidSignature):
            paystack.verify_webhook(raw, signature)

    def test_signed_but_not_an_event(self):
        raw = json.dumps(["not", "an", "event"]).encode()
        with pytest.raises(InvalidSignature):
            paystack.verify_webhook(raw, paystack.compute_signature(raw))
