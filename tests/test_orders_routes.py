from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock, patch

import requests

from models.order import Order
from models.order_item import OrderItem
from models.order_settings import OrderSettings
from services.paystack import SIGNATURE_HEADER


def _checkout_body(product, quantity=2, price="10.00"):
    return {
        "items": [{"product_id": product.id, "quantity": quantity, "price": price, "name": product.name}],
        "shipping_address": "12 Marina Road, Lagos",
    }


def _paid_order(db, user, number="ORD321", items=True, **overrides):
    fields = dict(
        order_number=number,
        user_id=user.id,
        payment_method="paystack",
        currency="NGN",
        total_amount=Decimal("21.00"),
        shipping_fee=Decimal("1.00"),
        is_paid=True,
        paid_at=datetime.utcnow(),
        status="processing",
        shipping_address="12 Marina Road",
        payment_reference=f"ref-{number}",
        delivery_token="a" * 64,
        cart_items=[{"product_id": 1, "name": "Widget", "unit_price": "10.00", "quantity": 2}],
    )
    fields.update(overrides)
    order = Order(**fields)
    db.add(order)
    db.flush()
    if items:
        db.add(OrderItem(order_id=order.id, product_id=None, name="Widget", price=Decimal("10.00"), quantity=2))
    db.commit()
    db.refresh(order)
    return order


class TestCheckout:
    """POST /orders opens a Paystack checkout"""

    @patch("services.paystack.requests.post")
    def test_checkout_returns_redirect(self, mock_post, client, db, auth_headers, widget, order_settings):
        response = Mock()
        response.json.return_value = {
            "status": True,
            "data": {"authorization_url": "https://checkout.paystack.com/xyz", "access_code": "xyz", "reference": "r1"},
        }
        mock_post.return_value = response

        res = client.post("/orders", json=_checkout_body(widget), headers=auth_headers)

        assert res.status_code == 201, res.text
        body = res.json()
        assert body["url"] == "https://checkout.paystack.com/xyz"
        assert body["items_total"] == 20.0
        assert body["shipping_fee"] == 1.0
        assert body["total"] == 21.0
        assert mock_post.call_args.kwargs["json"]["amount"] == 2100
        # Nothing is persisted before payment
        assert db.query(Order).count() == 0

    def test_requires_auth(self, client, widget):
        assert client.post("/orders", json=_checkout_body(widget)).status_code == 401

    def test_insufficient_stock(self, client, auth_headers, widget, order_settings):
        res = client.post("/orders", json=_checkout_body(widget, quantity=11), headers=auth_headers)
        assert res.status_code == 409
        assert res.json()["detail"] == "Insufficient stock for Widget"

    def test_unknown_product(self, client, auth_headers, widget, order_settings):
        body = _checkout_body(widget)
        body["items"][0]["product_id"] = 9999
        assert client.post("/orders", json=body, headers=auth_headers).status_code == 404

    def test_unknown_fields_rejected(self, client, auth_headers, widget, order_settings):
        body = _checkout_body(widget)
        body["items"][0]["discount"] = 90
        assert client.post("/orders", json=body, headers=auth_headers).status_code == 422

    def test_price_mismatch(self, client, auth_headers, widget, order_settings):
        res = client.post("/orders", json=_checkout_body(widget, price="1.00"), headers=auth_headers)
        assert res.status_code == 400

    def test_ordering_disabled(self, client, db, auth_headers, widget, order_settings):
        order_settings.enabled = False
        db.commit()

        res = client.post("/orders", json=_checkout_body(widget), headers=auth_headers)
        assert res.status_code == 403
        assert res.json()["detail"] == "Ordering is disabled"

    @patch("services.paystack.requests.post")
    def test_gateway_down(self, mock_post, client, auth_headers, widget, order_settings):
        mock_post.side_effect = requests.Timeout("slow")
        res = client.post("/orders", json=_checkout_body(widget), headers=auth_headers)
        assert res.status_code == 502


class TestPaymentWebhook:
    """POST /webhooks/payment"""

    def test_processes_then_acknowledges_duplicate(self, client, db, customer, widget, charge_event, signed):
        raw, signature = signed(charge_event("pi_123", customer.id, [(widget.id, "Widget", "10.00", 2)], shipping_fee="1.00"))
        headers = {SIGNATURE_HEADER: signature, "Content-Type": "application/json"}

        first = client.post("/webhooks/payment", content=raw, headers=headers)
        second = client.post("/webhooks/payment", content=raw, headers=headers)

        assert first.status_code == 200
        assert first.json()["outcome"] == "processed"
        assert second.status_code == 200
        assert second.json()["outcome"] == "already_processed"
        assert db.query(Order).count() == 1
        assert db.query(Order).one().total_amount == Decimal("21.00")

    def test_bad_signature(self, client, db, customer, widget, charge_event, signed):
        raw, _ = signed(charge_event("pi_x", customer.id, [(widget.id, "Widget", "10.00", 1)]))

        res = client.post("/webhooks/payment", content=raw, headers={SIGNATURE_HEADER: "bad"})

        assert res.status_code == 400
        assert db.query(Order).count() == 0

    def test_missing_signature(self, client, charge_event, signed):
        raw, _ = signed(charge_event("pi_y", 1, [(1, "Widget", "10.00", 1)]))
        assert client.post("/webhooks/payment", content=raw).status_code == 400

    def test_pipeline_failure_returns_500(self, client, db, customer, widget, charge_event, signed):
        raw, signature = signed(charge_event("pi_z", customer.id, [(widget.id, "Widget", "10.00", 1)]))

        with patch("services.reconciliation.inventory.decrement", side_effect=RuntimeError("boom")):
            res = client.post("/webhooks/payment", content=raw, headers={SIGNATURE_HEADER: signature})

        assert res.status_code == 500
        assert db.query(Order).count() == 0


class TestOrderQueries:
    def test_customer_sees_only_own_orders(self, client, db, customer, other_customer, auth_headers):
        mine = _paid_order(db, customer, "ORD111")
        _paid_order(db, other_customer, "ORD222")

        res = client.get("/orders/mine", headers=auth_headers)

        assert res.status_code == 200
        assert [o["order_number"] for o in res.json()] == [mine.order_number]

    def test_order_never_exposes_delivery_token(self, client, db, customer, auth_headers):
        order = _paid_order(db, customer)
        body = client.get(f"/orders/{order.id}", headers=auth_headers).json()
        assert "delivery_token" not in body
        assert body["items_source"] == "normalized"
        assert body["items"][0]["name"] == "Widget"

    def test_legacy_snapshot_fallback(self, client, db, customer, auth_headers):
        order = _paid_order(db, customer, items=False)

        body = client.get(f"/orders/{order.id}", headers=auth_headers).json()

        assert body["items_source"] == "legacy_snapshot"
        assert body["items"] == [
            {"id": None, "product_id": 1, "name": "Widget", "price": 10.0, "quantity": 2, "image": None}
        ]

    def test_other_users_order_is_hidden(self, client, db, other_customer, auth_headers):
        order = _paid_order(db, other_customer)
        assert client.get(f"/orders/{order.id}", headers=auth_headers).status_code == 404

    def test_admin_lists_all(self, client, db, customer, other_customer, admin_headers, auth_headers):
        _paid_order(db, customer, "ORD111")
        _paid_order(db, other_customer, "ORD222")

        assert len(client.get("/orders", headers=admin_headers).json()) == 2
        assert client.get("/orders", headers=auth_headers).status_code == 403


class TestOrderLifecycle:
    def test_status_update_emails_customer(self, client, db, customer, admin_headers, mock_email_send):
        order = _paid_order(db, customer)

        res = client.put(f"/orders/{order.id}/status", json={"status": "shipped"}, headers=admin_headers)

        assert res.status_code == 200
        assert res.json()["is_shipped"] is True
        assert mock_email_send[-1]["to"] == customer.email
        assert "shipped" in mock_email_send[-1]["subject"]

    def test_invalid_status(self, client, db, customer, admin_headers):
        order = _paid_order(db, customer)
        res = client.put(f"/orders/{order.id}/status", json={"status": "teleported"}, headers=admin_headers)
        assert res.status_code == 422

    def test_delivered_cannot_be_reverted(self, client, db, customer, admin_headers):
        order = _paid_order(db, customer, is_delivered=True, status="delivered")
        res = client.put(f"/orders/{order.id}/status", json={"status": "shipped"}, headers=admin_headers)
        assert res.status_code == 403

    def test_status_update_is_admin_only(self, client, db, customer, auth_headers):
        order = _paid_order(db, customer)
        res = client.put(f"/orders/{order.id}/status", json={"status": "shipped"}, headers=auth_headers)
        assert res.status_code == 403

    def test_mark_received(self, client, db, customer, auth_headers):
        order = _paid_order(db, customer)

        first = client.put(f"/orders/{order.id}/mark-received", headers=auth_headers)
        second = client.put(f"/orders/{order.id}/mark-received", headers=auth_headers)

        assert first.status_code == 200
        assert first.json()["is_delivered"] is True
        assert second.status_code == 400

    def test_confirm_delivery_link(self, client, db, customer):
        order = _paid_order(db, customer)

        bad = client.get(f"/orders/{order.id}/confirm-delivery", params={"token": "b" * 64})
        good = client.get(f"/orders/{order.id}/confirm-delivery", params={"token": "a" * 64})
        again = client.get(f"/orders/{order.id}/confirm-delivery", params={"token": "a" * 64})

        assert bad.status_code == 403
        assert good.status_code == 200
        assert again.status_code == 400

    def test_admin_delete_cascades_items(self, client, db, customer, admin_headers):
        order = _paid_order(db, customer)
        order_id = order.id

        res = client.delete(f"/orders/{order_id}", headers=admin_headers)

        assert res.status_code == 200
        db.expire_all()
        assert db.get(Order, order_id) is None
        assert db.query(OrderItem).filter(OrderItem.order_id == order_id).count() == 0

    def test_delete_missing(self, client, admin_headers):
        assert client.delete("/orders/9999", headers=admin_headers).status_code == 404


class TestOrderSettings:
    def test_created_lazily(self, client, db):
        res = client.get("/orders/settings")
        assert res.status_code == 200
        assert res.json()["enabled"] is True
        assert db.query(OrderSettings).count() == 1

    def test_admin_update(self, client, admin_headers):
        res = client.put("/orders/settings", json={"enabled": False, "shipping_fee_percent": "7.5"}, headers=admin_headers)
        assert res.status_code == 200
        assert res.json() == {"enabled": False, "shipping_fee_percent": 7.5}

    def test_customer_cannot_update(self, client, auth_headers):
        assert client.put("/orders/settings", json={"enabled": False}, headers=auth_headers).status_code == 403
