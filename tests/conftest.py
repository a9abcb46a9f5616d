import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Any, Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from storefront.app import app as fastapi_app
from storefront.catalog.service import ProductCatalog
from storefront.utils.errors import DuplicateEvent

ADMIN_TOKEN = "test-admin-token"


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeStore:
    """Tables en mémoire (products, coupons, settings, orders, checkout_sessions)."""

    def __init__(self):
        self.products: Dict[str, dict] = {}
        self.coupons: Dict[str, dict] = {}
        self.settings: Dict[str, dict] = {}
        self.orders: List[dict] = []
        self.sessions: Dict[str, dict] = {}

    # orders
    def insert_order(self, row: Dict[str, Any]) -> Optional[dict]:
        for existing in self.orders:
            if existing["order_id"] == row["order_id"]:
                raise DuplicateEvent("Order already exists for this payment")
            if row.get("correlation_id") and existing.get("correlation_id") == row["correlation_id"]:
                raise DuplicateEvent("Order already exists for this payment")
        created = dict(row)
        self.orders.append(created)
        return created

    def find_order_by_correlation_id(self, correlation_id: str) -> Optional[dict]:
        for row in self.orders:
            if row.get("correlation_id") == correlation_id:
                return row
        return None

    def list_recent_orders_for_product(self, product_id: str, since_iso: str, limit: int = 20) -> List[dict]:
        rows = [r for r in self.orders if r["product_id"] == str(product_id) and r["created_at"] >= since_iso]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)[:limit]

    def get_order(self, order_id: str) -> Optional[dict]:
        for row in self.orders:
            if row["order_id"] == order_id:
                return row
        return None

    def update_order(self, order_id: str, fields: Dict[str, Any]) -> bool:
        row = self.get_order(order_id)
        if row is None:
            return False
        row.update(fields)
        return True

    # checkout_sessions
    def insert_session(self, row: Dict[str, Any]) -> bool:
        if row["checkout_id"] in self.sessions:
            return False
        self.sessions[row["checkout_id"]] = dict(row)
        return True

    def get_session(self, checkout_id: str) -> Optional[dict]:
        return self.sessions.get(checkout_id)

    def update_session(self, checkout_id: str, fields: Dict[str, Any], only_status: Optional[str] = None) -> bool:
        row = self.sessions.get(checkout_id)
        if row is None or (only_status and row.get("status") != only_status):
            return False
        row.update(fields)
        new_id = fields.get("checkout_id")
        if new_id and new_id != checkout_id:
            self.sessions[new_id] = self.sessions.pop(checkout_id)
        return True

    def list_expired_pending(self, now_iso: str, limit: int) -> List[dict]:
        rows = [s for s in self.sessions.values() if s.get("status") == "pending" and s["expires_at"] < now_iso]
        return sorted(rows, key=lambda s: s["created_at"])[:limit]

    # catalogue
    def fetch_product(self, product_id: Any) -> Optional[dict]:
        return self.products.get(str(product_id))

    def fetch_active_coupon(self, code: str) -> Optional[dict]:
        coupon = self.coupons.get((code or "").strip().upper())
        return coupon if coupon and coupon.get("status", "active") == "active" else None

    def increment_coupon_use(self, code: str) -> bool:
        coupon = self.coupons.get((code or "").strip().upper())
        if coupon is None:
            return False
        coupon["used_count"] = int(coupon.get("used_count") or 0) + 1
        return True

    def fetch_setting(self, key: str) -> Dict[str, Any]:
        return dict(self.settings.get(key) or {})


@pytest.fixture()
def store(monkeypatch) -> FakeStore:
    """Remplace les repositories Supabase par un store en mémoire."""
    fake = FakeStore()
    for name in ("insert_order", "find_order_by_correlation_id", "list_recent_orders_for_product", "get_order", "update_order"):
        monkeypatch.setattr(f"storefront.orders.repository.{name}", getattr(fake, name))
    for name in ("insert_session", "get_session", "update_session", "list_expired_pending"):
        monkeypatch.setattr(f"storefront.checkout.repository.{name}", getattr(fake, name))
    for name in ("fetch_product", "fetch_active_coupon", "increment_coupon_use", "fetch_setting"):
        monkeypatch.setattr(f"storefront.catalog.repository.{name}", getattr(fake, name))
    return fake


@pytest.fixture()
def catalog(store) -> ProductCatalog:
    return ProductCatalog()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Aucune clé réelle: chaque test active explicitement ce dont il a besoin."""
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    for name in (
        "WHOP_API_KEY", "WHOP_COMPANY_ID", "WHOP_WEBHOOK_SECRET", "WHOP_DEFAULT_PRODUCT_ID",
        "PAYPAL_CLIENT_ID", "PAYPAL_SECRET", "PAYPAL_WEBHOOK_SECRET",
    ):
        monkeypatch.setattr(f"storefront.config.{name}", "")
    monkeypatch.setattr("storefront.config.PAYPAL_MODE", "sandbox")
    monkeypatch.setattr("storefront.config.ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr("storefront.config.BASE_URL", "http://testserver")


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app, store) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
