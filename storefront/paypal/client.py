"""
Client REST PayPal (Orders v2), httpx synchrone avec timeout fixe.

- get_access_token: OAuth2 client_credentials (Basic auth).
- create_order / capture_order: réponses non-2xx -> ProviderError (message PayPal si lisible).
"""
from typing import Any, Dict, Optional
import logging
import httpx

from storefront import config
from storefront.utils.errors import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "paypal"
LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"


def base_url(mode: str) -> str:
    return LIVE_BASE_URL if (mode or "").lower() == "live" else SANDBOX_BASE_URL


def _send(method: str, url: str, **kwargs) -> httpx.Response:
    try:
        return httpx.request(method, url, timeout=config.PROVIDER_TIMEOUT_SECONDS, **kwargs)
    except httpx.TimeoutException:
        raise ProviderError("PayPal API timeout", status_code=504, provider=PROVIDER)
    except httpx.HTTPError as e:
        raise ProviderError(f"PayPal API unreachable: {e}", status_code=502, provider=PROVIDER)


def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def get_access_token(client_id: str, secret: str, mode: str) -> str:
    resp = _send(
        "POST",
        f"{base_url(mode)}/v1/oauth2/token",
        auth=(client_id, secret),
        data={"grant_type": "client_credentials"},
        headers={"Accept": "application/json"},
    )
    if resp.status_code >= 400:
        err = ProviderError.from_response(PROVIDER, resp, "invalid credentials")
        raise ProviderError(f"PayPal authentication failed: {err.message}", status_code=err.status_code, provider=PROVIDER)
    token = _json(resp).get("access_token")
    if not token:
        raise ProviderError("PayPal authentication failed: no access token", provider=PROVIDER)
    return token


def create_order(access_token: str, mode: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    resp = _send(
        "POST",
        f"{base_url(mode)}/v2/checkout/orders",
        json=payload,
        headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
    )
    if resp.status_code >= 400:
        logger.warning("paypal.client.create_order failed status=%s", resp.status_code)
        raise ProviderError.from_response(PROVIDER, resp, "Failed to create PayPal order")
    return _json(resp)


def capture_order(access_token: str, mode: str, order_id: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
    if request_id:
        # Idempotence côté PayPal: une capture rejouée renvoie le même résultat
        headers["PayPal-Request-Id"] = request_id
    resp = _send("POST", f"{base_url(mode)}/v2/checkout/orders/{order_id}/capture", headers=headers)
    if resp.status_code >= 400:
        logger.warning("paypal.client.capture_order failed order_id=%s status=%s", order_id, resp.status_code)
        raise ProviderError.from_response(PROVIDER, resp, "Payment capture failed")
    return _json(resp)
