import json

import pytest


@pytest.fixture()
def paypal_ready(store, monkeypatch):
    monkeypatch.setattr("storefront.config.PAYPAL_CLIENT_ID", "client-id-1234567890")
    monkeypatch.setattr("storefront.config.PAYPAL_SECRET", "secret-1234567890")
    monkeypatch.setattr("storefront.paypal.client.get_access_token", lambda cid, secret, mode: "token")
    monkeypatch.setattr("storefront.paypal.client.create_order", lambda token, mode, payload: {
        "id": "PP-ORDER-9", "status": "CREATED", "links": [{"rel": "payer-action", "href": "https://paypal/pay"}],
    })
    monkeypatch.setattr("storefront.paypal.client.capture_order", lambda token, mode, oid, request_id=None: {
        "id": oid,
        "status": "COMPLETED",
        "payer": {"email_address": "payer@example.com"},
        "purchase_units": [{"payments": {"captures": [{
            "amount": {"value": "30.00"}, "custom_id": json.dumps({"pid": "p1", "email": "buyer@example.com"}),
        }]}}],
    })
    store.products["p1"] = {"id": "p1", "title": "Custom video", "normal_price": "30"}


def test_create_then_capture(client, store, paypal_ready):
    r = client.post("/api/v1/paypal/create-order", json={"product_id": "p1", "email": "buyer@example.com"})
    assert r.status_code == 200
    assert r.json()["checkout_url"] == "https://paypal/pay"
    assert r.json()["amount"] == 30.0

    c1 = client.post("/api/v1/paypal/capture", json={"orderID": "PP-ORDER-9"})
    c2 = client.post("/api/v1/paypal/capture", json={"orderID": "PP-ORDER-9"})
    assert c1.status_code == 200 and c1.json()["duplicate"] is False
    assert c2.status_code == 200 and c2.json()["duplicate"] is True
    assert len(store.orders) == 1
    assert store.sessions["PP-ORDER-9"]["status"] == "completed"


def test_return_url_uses_request_host_without_base_url(client, store, paypal_ready, monkeypatch):
    sent = []

    def _create_order(token, mode, payload):
        sent.append(payload)
        return {"id": "PP-ORDER-10", "status": "CREATED", "links": []}

    monkeypatch.setattr("storefront.config.BASE_URL", "")
    monkeypatch.setattr("storefront.paypal.client.create_order", _create_order)
    r = client.post("/api/v1/paypal/create-order", json={"product_id": "p1"})
    assert r.status_code == 200
    context = sent[0]["application_context"]
    assert context["return_url"] == "http://testserver/success?provider=paypal&product=p1"


def test_capture_requires_order_id(client, store):
    r = client.post("/api/v1/paypal/capture", json={})
    assert r.status_code == 422


def test_create_order_without_credentials_is_400(client, store):
    store.products["p1"] = {"id": "p1", "normal_price": "30"}
    r = client.post("/api/v1/paypal/create-order", json={"product_id": "p1"})
    assert r.status_code == 400
    assert "PayPal" in r.json()["error"]


def test_webhook_route_skips_unrelated_events(client, store):
    body = json.dumps({"event_type": "CHECKOUT.ORDER.APPROVED", "resource": {}}).encode()
    r = client.post("/api/v1/paypal/webhook", content=body)
    assert r.status_code == 200
    assert r.json()["skipped"] is True
