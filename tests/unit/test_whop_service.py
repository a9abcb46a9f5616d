from decimal import Decimal
import json

import pytest

from storefront.orders.models import CheckoutRequest
from storefront.payments.signature import compute_signature
from storefront.utils.errors import InvalidProduct, InvalidSignature, MalformedPayload, OrderError, ProviderError
from storefront.whop import service as whop_service


@pytest.fixture()
def whop_env(store, monkeypatch):
    monkeypatch.setattr("storefront.config.WHOP_API_KEY", "whop_key")
    monkeypatch.setattr("storefront.config.WHOP_COMPANY_ID", "biz_1")
    store.products["p1"] = {
        "id": "p1", "title": "Custom video", "normal_price": "20", "whop_product_id": "prod_w1", "delivery_days": "2",
        "addons_json": json.dumps([{"field": "rush", "options": [{"label": "yes", "price": 5}]}]),
    }
    calls = {"plans": [], "sessions": [], "deleted": []}

    def _create_plan(api_key, **kwargs):
        calls["plans"].append(kwargs)
        return {"id": "plan_abc", "purchase_url": "https://whop.com/checkout/plan_abc"}

    def _create_checkout_session(api_key, **kwargs):
        calls["sessions"].append(kwargs)
        return {"id": "ch_xyz", "purchase_url": "https://whop.com/checkout/ch_xyz"}

    monkeypatch.setattr("storefront.whop.client.create_plan", _create_plan)
    monkeypatch.setattr("storefront.whop.client.create_checkout_session", _create_checkout_session)
    monkeypatch.setattr("storefront.whop.client.delete_checkout_session", lambda key, cid: calls["deleted"].append(cid) or {})
    monkeypatch.setattr("storefront.whop.client.delete_plan", lambda key, pid: calls["deleted"].append(pid) or {})
    return calls


def _webhook_body(checkout_id="ch_xyz", **data):
    payload = {
        "type": "payment.succeeded",
        "data": {
            "checkout_session_id": checkout_id,
            "final_amount": 1.0,
            "metadata": {"product_id": "p1", "email": "buyer@example.com"},
        },
    }
    payload["data"].update(data)
    return json.dumps(payload).encode("utf-8")


def test_plan_checkout_uses_server_price_and_tracks_session(store, catalog, whop_env):
    payload = CheckoutRequest.model_validate({
        "productId": "p1", "email": "buyer@example.com", "amount": "1", "addons": [{"field": "rush", "value": "yes"}],
    })
    result = whop_service.create_plan_checkout(payload, catalog, "http://shop.test")

    assert result["amount"] == Decimal("25.00")
    assert result["checkout_id"] == "ch_xyz"
    assert result["checkout_url"] == "https://whop.com/checkout/ch_xyz"
    assert result["delivery_minutes"] == 2 * 1440
    assert whop_env["plans"][0]["amount"] == 25.0
    assert whop_env["plans"][0]["product_id"] == "prod_w1"
    assert whop_env["sessions"][0]["redirect_url"] == "http://shop.test/success?provider=whop&product=p1"

    session = store.sessions["ch_xyz"]
    assert session["status"] == "pending"
    assert session["plan_id"] == "plan_abc"
    assert json.loads(session["metadata"])["amount"] == 25.0


def test_plan_checkout_falls_back_to_plan_link(store, catalog, whop_env, monkeypatch):
    def _fail(api_key, **kwargs):
        raise ProviderError("Bad request", status_code=400, provider="whop")

    monkeypatch.setattr("storefront.whop.client.create_checkout_session", _fail)
    payload = CheckoutRequest.model_validate({"productId": "p1"})
    result = whop_service.create_plan_checkout(payload, catalog, "http://shop.test")

    assert result["checkout_url"] == "https://whop.com/checkout/plan_abc"
    assert "warning" in result
    assert "plan_plan_abc" in store.sessions


def test_payment_through_plan_link_creates_single_order(store, catalog, whop_env, monkeypatch):
    def _fail(api_key, **kwargs):
        raise ProviderError("Bad request", status_code=400, provider="whop")

    monkeypatch.setattr("storefront.whop.client.create_checkout_session", _fail)
    payload = CheckoutRequest.model_validate({
        "productId": "p1", "email": "buyer@example.com", "addons": [{"field": "rush", "value": "yes"}],
    })
    checkout = whop_service.create_plan_checkout(payload, catalog, "http://shop.test")
    assert checkout["checkout_id"] == "plan_plan_abc"

    # Aucun checkout_session_id ni métadonnées: seul le plan identifie le paiement
    body = json.dumps({
        "type": "payment.succeeded",
        "data": {"id": "pay_1", "plan_id": "plan_abc", "email": "buyer@example.com", "final_amount": 25},
    }).encode("utf-8")
    first = whop_service.handle_webhook(body, {}, catalog)
    second = whop_service.handle_webhook(body, {}, catalog)

    assert first["duplicate"] is False
    assert first["amount"] == Decimal("25.00")
    assert second == {"received": True, "duplicate": True, "order_id": first["order_id"]}
    assert len(store.orders) == 1
    assert store.orders[0]["product_id"] == "p1"
    assert store.orders[0]["correlation_id"] == "plan_plan_abc"
    assert store.sessions["plan_plan_abc"]["status"] == "completed"
    assert whop_env["deleted"] == ["plan_abc"]


def test_to_payment_event_reads_nested_plan():
    event = whop_service.to_payment_event({"data": {"plan": {"id": "plan_9"}, "email": "u@x.io"}})
    assert event.plan_id == "plan_9"
    assert event.correlation_id == "plan_plan_9"


def test_plan_checkout_unknown_product(store, catalog, whop_env):
    with pytest.raises(InvalidProduct) as exc:
        whop_service.create_plan_checkout(CheckoutRequest.model_validate({"productId": "nope"}), catalog, "http://x")
    assert exc.value.status_code == 404


def test_plan_checkout_requires_whop_product_id(store, catalog, whop_env):
    store.products["p2"] = {"id": "p2", "normal_price": "10"}
    with pytest.raises(OrderError):
        whop_service.create_plan_checkout(CheckoutRequest.model_validate({"productId": "p2"}), catalog, "http://x")


def test_settings_row_completes_missing_env(store, catalog, monkeypatch):
    store.settings["whop"] = {"api_key": "from_db", "default_product_id": "prod_default", "webhook_secret": "s"}
    monkeypatch.setattr("storefront.config.WHOP_API_KEY", "from_env")
    settings = whop_service.get_whop_settings(catalog)
    assert settings["api_key"] == "from_env"
    assert settings["default_product_id"] == "prod_default"
    assert settings["webhook_secret"] == "s"


def test_webhook_signed_creates_order_and_cleans_up(store, catalog, whop_env, monkeypatch):
    monkeypatch.setattr("storefront.config.WHOP_WEBHOOK_SECRET", "whsec")
    payload = CheckoutRequest.model_validate({"productId": "p1", "email": "buyer@example.com"})
    whop_service.create_plan_checkout(payload, catalog, "http://shop.test")

    body = _webhook_body()
    result = whop_service.handle_webhook(body, {"x-whop-signature": compute_signature("whsec", body)}, catalog)

    assert result["duplicate"] is False
    assert result["amount"] == Decimal("20.00")
    assert len(store.orders) == 1
    assert store.sessions["ch_xyz"]["status"] == "completed"
    assert whop_env["deleted"] == ["ch_xyz", "plan_abc"]


def test_webhook_bad_signature_is_rejected(store, catalog, whop_env, monkeypatch):
    monkeypatch.setattr("storefront.config.WHOP_WEBHOOK_SECRET", "whsec")
    with pytest.raises(InvalidSignature):
        whop_service.handle_webhook(_webhook_body(), {"x-whop-signature": "sha256=00"}, catalog)
    assert store.orders == []


def test_webhook_without_secret_is_processed(store, catalog, whop_env):
    result = whop_service.handle_webhook(_webhook_body(), {"x-whop-signature": "sha256=unverifiable"}, catalog)
    assert result["duplicate"] is False
    assert len(store.orders) == 1


def test_webhook_other_event_types_are_skipped(store, catalog, whop_env):
    body = json.dumps({"type": "membership.went_valid", "data": {}}).encode()
    assert whop_service.handle_webhook(body, {}, catalog) == {"received": True, "skipped": True, "type": "membership.went_valid"}


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", json.dumps({"type": "payment.succeeded"}).encode()])
def test_webhook_malformed_body(store, catalog, whop_env, body):
    with pytest.raises(MalformedPayload):
        whop_service.handle_webhook(body, {}, catalog)


def test_to_payment_event_reads_nested_email():
    event = whop_service.to_payment_event({
        "type": "payment.succeeded",
        "data": {"checkout_session_id": "ch_1", "user": {"email": "u@x.io"}, "metadata": {"product_id": 7}, "final_amount": "12.5"},
    })
    assert event.correlation_id == "ch_1"
    assert event.product_id == "7"
    assert event.email == "u@x.io"
    assert event.reported_amount == Decimal("12.5")


def test_expired_session_cleaner_hides_plan_and_falls_back_to_delete(monkeypatch):
    actions = []
    monkeypatch.setattr("storefront.whop.client.delete_checkout_session", lambda key, cid: actions.append(("delete_checkout", cid)))

    def _hide(key, pid):
        actions.append(("hide", pid))
        raise ProviderError("nope", status_code=422, provider="whop")

    monkeypatch.setattr("storefront.whop.client.hide_plan", _hide)
    monkeypatch.setattr("storefront.whop.client.delete_plan", lambda key, pid: actions.append(("delete_plan", pid)))

    cleaner = whop_service.make_expired_session_cleaner("key")
    cleaner({"checkout_id": "ch_1", "plan_id": "plan_1"})
    cleaner({"checkout_id": "plan_plan_2", "plan_id": "plan_2"})

    assert actions == [
        ("delete_checkout", "ch_1"), ("hide", "plan_1"), ("delete_plan", "plan_1"),
        ("hide", "plan_2"), ("delete_plan", "plan_2"),
    ]


def test_expired_session_cleaner_without_api_key_fails():
    with pytest.raises(ProviderError):
        whop_service.make_expired_session_cleaner("")({"checkout_id": "ch_1", "plan_id": "plan_1"})
