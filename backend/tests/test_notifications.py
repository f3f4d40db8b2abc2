"""
Tests for gateway notification endpoints: webhook signature checks, IPN
parsing, and the always-200 acknowledgement.
"""

import hashlib
import hmac

import pytest

from rest_api.routers.notifications import routes as notification_routes
from rest_api.routers.notifications.routes import parse_ipn, verify_webhook_signature
from rest_api.services.payments.gateway import PaymentObservation
from shared.config.constants import GatewayStatus


SECRET = "whsec-test"


def sign(data_id, request_id, ts="1700000000", secret=SECRET):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


@pytest.fixture
def pix_payment(client, store_headers, seed_products, fake_gateway):
    """A PIX order for both sodas; returns (order_id, payment_id), approval staged at the gateway."""
    order = client.post(
        "/api/orders",
        json={"customer_name": "Bo", "items": [{"product_id": seed_products["soda"].id, "quantity": 2}]},
        headers=store_headers,
    ).json()
    intent = client.post("/api/payment/create-pix", json={"order_id": order["id"]}, headers=store_headers).json()
    payment_id = intent["payment_id"]
    fake_gateway.payments[payment_id] = PaymentObservation(
        status=GatewayStatus.APPROVED,
        intent_id=payment_id,
        settled_payment_id=payment_id,
        external_reference=order["id"],
    )
    return order["id"], payment_id


class TestVerifyWebhookSignature:

    def test_valid_signature(self):
        assert verify_webhook_signature(sign("123", "req-1"), "req-1", "123", secret=SECRET) is True

    def test_wrong_secret(self):
        header = sign("123", "req-1", secret="other")
        assert verify_webhook_signature(header, "req-1", "123", secret=SECRET) is False

    def test_tampered_data_id(self):
        assert verify_webhook_signature(sign("123", "req-1"), "req-1", "124", secret=SECRET) is False

    def test_missing_headers(self):
        assert verify_webhook_signature(None, "req-1", "123", secret=SECRET) is False
        assert verify_webhook_signature(sign("123", "req-1"), None, "123", secret=SECRET) is False

    def test_malformed_header(self):
        assert verify_webhook_signature("garbage", "req-1", "123", secret=SECRET) is False
        assert verify_webhook_signature("ts=1", "req-1", "123", secret=SECRET) is False

    def test_no_secret_skips_verification(self):
        assert verify_webhook_signature(None, None, "123", secret="") is True


class TestParseIpn:

    def test_query_parameters(self):
        assert parse_ipn({"id": "55", "topic": "payment"}, {}) == ("55", "payment")

    def test_data_id_and_type(self):
        assert parse_ipn({"data.id": "55", "type": "payment"}, {}) == ("55", "payment")

    def test_body_fields(self):
        assert parse_ipn({}, {"data": {"id": 55}, "type": "payment"}) == ("55", "payment")

    def test_resource_url(self):
        body = {"resource": "https://api.mercadopago.com/v1/payments/98765", "topic": "payment"}
        assert parse_ipn({}, body) == ("98765", "payment")

    def test_query_wins_over_body(self):
        assert parse_ipn({"id": "1", "topic": "payment"}, {"id": "2", "topic": "merchant_order"}) == ("1", "payment")

    def test_nothing(self):
        assert parse_ipn({}, {}) == (None, None)


class TestWebhookEndpoint:

    def test_webhook_settles_order(self, client, store_headers, pix_payment, seed_products, stock_of):
        order_id, payment_id = pix_payment

        response = client.post(
            "/api/webhooks/mercadopago",
            json={"action": "payment.updated", "data": {"id": payment_id}},
            headers=store_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "paid"
        assert stock_of(seed_products["soda"]) == (0, 0)

    def test_webhook_without_store_resolves_tenant(self, client, store_headers, pix_payment):
        order_id, payment_id = pix_payment

        client.post("/api/webhooks/mercadopago", json={"action": "payment.updated", "data": {"id": payment_id}})

        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "paid"

    def test_invalid_signature_is_acknowledged_and_dropped(self, client, store_headers, pix_payment, fake_gateway, monkeypatch):
        monkeypatch.setattr(notification_routes.settings, "mercadopago_webhook_secret", SECRET)
        order_id, payment_id = pix_payment

        response = client.post(
            "/api/webhooks/mercadopago",
            json={"action": "payment.updated", "data": {"id": payment_id}},
            headers={**store_headers, "x-signature": "ts=1,v1=deadbeef", "x-request-id": "req-1"},
        )

        assert response.status_code == 200
        assert fake_gateway.payment_calls == 0
        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "pending"

    def test_valid_signature_is_processed(self, client, store_headers, pix_payment, monkeypatch):
        monkeypatch.setattr(notification_routes.settings, "mercadopago_webhook_secret", SECRET)
        order_id, payment_id = pix_payment

        client.post(
            "/api/webhooks/mercadopago",
            json={"action": "payment.updated", "data": {"id": payment_id}},
            headers={**store_headers, "x-signature": sign(payment_id, "req-1"), "x-request-id": "req-1"},
        )

        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "paid"

    def test_processing_failure_still_returns_200(self, client, store_headers, pix_payment, fake_gateway):
        _, payment_id = pix_payment
        fake_gateway.unavailable = True

        response = client.post(
            "/api/webhooks/mercadopago",
            json={"action": "payment.updated", "data": {"id": payment_id}},
            headers=store_headers,
        )

        assert response.status_code == 200

    def test_non_json_body_is_acknowledged(self, client):
        response = client.post("/api/webhooks/mercadopago", content=b"not json")
        assert response.status_code == 200


class TestIpnEndpoint:

    def test_ipn_post_with_query(self, client, store_headers, pix_payment):
        order_id, payment_id = pix_payment

        response = client.post(f"/api/notifications/mercadopago?id={payment_id}&topic=payment")

        assert response.status_code == 200
        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "paid"

    def test_ipn_form_encoded_body_is_accepted(self, client):
        response = client.post(
            "/api/notifications/mercadopago",
            content=b"id=1&topic=payment",
            headers={"content-type": "application/x-www-form-urlencoded"},
        )
        assert response.status_code == 200

    def test_ipn_without_id(self, client, fake_gateway):
        response = client.post("/api/notifications/mercadopago", json={"topic": "payment"})

        assert response.status_code == 200
        assert fake_gateway.payment_calls == 0

    def test_ipn_probe(self, client):
        response = client.get("/api/notifications/mercadopago")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_ipn_get_with_id_is_a_delivery(self, client, store_headers, pix_payment):
        order_id, payment_id = pix_payment

        client.get(f"/api/notifications/mercadopago?id={payment_id}&topic=payment")

        order = client.get(f"/api/orders/{order_id}", headers=store_headers).json()
        assert order["payment_status"] == "paid"
