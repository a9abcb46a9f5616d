from datetime import timedelta
from decimal import Decimal
import json

import pytest

from storefront.checkout import service as checkout_service
from storefront.orders import service as orders_service
from storefront.payments.models import PaymentEvent
from storefront.payments.reconciliation import merge_metadata, reconcile_payment
from storefront.utils.errors import DuplicateEvent, MalformedPayload

ADDONS = json.dumps([{"field": "rush", "options": [{"label": "yes", "price": 5}]}])


@pytest.fixture()
def product(store):
    store.products["p1"] = {"id": "p1", "title": "Custom video", "normal_price": "20", "addons_json": ADDONS, "delivery_days": "3"}
    return store.products["p1"]


def _event(correlation_id="chk_abc123", **overrides):
    data = {
        "provider": "whop",
        "correlation_id": correlation_id,
        "product_id": "p1",
        "email": "buyer@example.com",
        "metadata": {"product_id": "p1", "email": "buyer@example.com"},
    }
    data.update(overrides)
    return PaymentEvent(**data)


def _payload(order):
    return json.loads(order["encrypted_data"])


def test_creates_one_order_at_server_price(store, catalog, product):
    event = _event(metadata={"product_id": "p1", "email": "buyer@example.com", "amount": "1.00",
                             "addons": [{"field": "rush", "value": "yes"}]})
    result = reconcile_payment(event, catalog)

    assert result["duplicate"] is False
    assert result["amount"] == Decimal("25.00")
    assert len(store.orders) == 1
    order = store.orders[0]
    assert order["order_id"].startswith("WHOP-")
    assert order["correlation_id"] == "chk_abc123"
    assert order["delivery_time_minutes"] == 3 * 1440
    assert _payload(order)["amount"] == 25.0
    assert _payload(order)["email"] == "buyer@example.com"


def test_same_correlation_id_twice_creates_one_order(store, catalog, product):
    first = reconcile_payment(_event(), catalog)
    second = reconcile_payment(_event(), catalog)

    assert first["duplicate"] is False
    assert second == {"received": True, "duplicate": True, "order_id": first["order_id"]}
    assert len(store.orders) == 1


def test_session_metadata_wins_over_provider_metadata(store, catalog, product):
    store.coupons["SAVE10"] = {"code": "SAVE10", "discount_type": "fixed", "discount_value": 10, "used_count": 4}
    checkout_service.open_session(
        "p1", "plan_1",
        {"product_id": "p1", "email": "buyer@example.com", "amount": Decimal("22.50"),
         "addons": [{"field": "Length", "value": "60s"}], "delivery_minutes": 1440, "coupon_code": "SAVE10"},
        900, checkout_id="chk_abc123",
    )
    result = reconcile_payment(_event(metadata={"product_id": "p1", "amount": "999"}), catalog)

    order = store.orders[0]
    assert result["amount"] == Decimal("22.50")
    assert order["delivery_time_minutes"] == 1440
    assert _payload(order)["addons"] == [{"field": "Length", "value": "60s"}]
    assert _payload(order)["coupon_code"] == "SAVE10"
    assert store.coupons["SAVE10"]["used_count"] == 5
    assert store.sessions["chk_abc123"]["status"] == "completed"

    reconcile_payment(_event(), catalog)
    assert store.coupons["SAVE10"]["used_count"] == 5


def test_tip_updates_existing_order_without_creating_one(store, catalog, product):
    store.orders.append({"order_id": "OD-123", "product_id": "p1", "created_at": "2024-01-01T00:00:00+00:00"})
    event = _event(correlation_id="chk_tip", metadata={"type": "tip", "orderId": "OD-123", "amount": 5})

    result = reconcile_payment(event, catalog)

    assert result == {"received": True, "duplicate": False, "tip": True, "order_id": "OD-123"}
    assert len(store.orders) == 1
    assert store.orders[0]["tip_paid"] is True
    assert store.orders[0]["tip_amount"] == 5.0


def test_tip_without_order_id_is_malformed(store, catalog, product):
    with pytest.raises(MalformedPayload):
        reconcile_payment(_event(metadata={"type": "tip", "amount": 5}), catalog)
    assert store.orders == []


def test_missing_product_id_is_malformed(store, catalog):
    with pytest.raises(MalformedPayload):
        reconcile_payment(_event(product_id=None, metadata={}), catalog)


def test_without_correlation_id_recent_same_email_is_duplicate(store, catalog, product):
    first = reconcile_payment(_event(correlation_id=None), catalog)
    second = reconcile_payment(_event(correlation_id=None, email="BUYER@example.com",
                                      metadata={"product_id": "p1", "email": "BUYER@example.com"}), catalog)
    other = reconcile_payment(_event(correlation_id=None, email="other@example.com",
                                     metadata={"product_id": "p1", "email": "other@example.com"}), catalog)

    assert second["duplicate"] is True
    assert second["order_id"] == first["order_id"]
    assert other["duplicate"] is False
    assert len(store.orders) == 2


def test_old_order_outside_window_is_not_duplicate(store, catalog, product):
    reconcile_payment(_event(correlation_id=None), catalog)
    old = orders_service.utcnow() - timedelta(minutes=10)
    store.orders[0]["created_at"] = old.isoformat()

    result = reconcile_payment(_event(correlation_id=None), catalog)
    assert result["duplicate"] is False
    assert len(store.orders) == 2


def test_concurrent_insert_is_reported_as_duplicate(store, catalog, product, monkeypatch):
    existing = {"order_id": "WHOP-1-aaaaaa", "product_id": "p1", "correlation_id": "chk_abc123"}
    lookups = iter([None, existing])
    monkeypatch.setattr("storefront.orders.repository.find_order_by_correlation_id", lambda cid: next(lookups))

    def _insert(row):
        raise DuplicateEvent("Order already exists for this payment")

    monkeypatch.setattr("storefront.orders.repository.insert_order", _insert)
    result = reconcile_payment(_event(), catalog)
    assert result == {"received": True, "duplicate": True, "order_id": "WHOP-1-aaaaaa"}


def test_unpriceable_product_falls_back_to_provider_amount(store, catalog):
    store.products["p1"] = {"id": "p1", "normal_price": "oops"}
    result = reconcile_payment(_event(reported_amount=Decimal("19.999")), catalog)
    assert result["amount"] == Decimal("20.00")
    assert len(store.orders) == 1


def test_cleanup_failure_does_not_fail_reconciliation(store, catalog, product):
    calls = []

    def _cleanup(correlation_id, session):
        calls.append(correlation_id)
        raise RuntimeError("provider down")

    result = reconcile_payment(_event(), catalog, cleanup=_cleanup)
    assert result["duplicate"] is False
    assert calls == ["chk_abc123"]
    assert len(store.orders) == 1


def test_merge_metadata_prefers_session_values():
    merged = merge_metadata({"amount": "1", "email": "x@y.z", "addons": [{"field": "a"}]}, {"amount": 25, "email": ""})
    assert merged["amount"] == 25
    assert merged["email"] == "x@y.z"
    assert merged["addons"] == [{"field": "a"}]
