"""
Client REST Whop (API v2), appels httpx synchrones avec timeout fixe.

Toute réponse non-2xx devient ProviderError (statut + message Whop si lisibles);
un timeout/erreur réseau devient ProviderError 504/502.
Les suppressions considèrent 404 comme un succès (ressource déjà absente).
"""
from typing import Any, Dict, Optional
import logging
import httpx

from storefront import config
from storefront.utils.errors import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "whop"


def _headers(api_key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


def _request(api_key: str, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
             fallback: str = "Whop API error", allow_404: bool = False) -> Dict[str, Any]:
    if not api_key:
        raise ProviderError("Whop API key not configured", status_code=500, provider=PROVIDER)
    url = f"{config.WHOP_API_BASE}{path}"
    try:
        resp = httpx.request(method, url, json=payload, headers=_headers(api_key), timeout=config.PROVIDER_TIMEOUT_SECONDS)
    except httpx.TimeoutException:
        raise ProviderError("Whop API timeout", status_code=504, provider=PROVIDER)
    except httpx.HTTPError as e:
        raise ProviderError(f"Whop API unreachable: {e}", status_code=502, provider=PROVIDER)
    if allow_404 and resp.status_code == 404:
        return {"not_found": True}
    if resp.status_code >= 400:
        logger.warning("whop.client %s %s failed status=%s", method, path, resp.status_code)
        raise ProviderError.from_response(PROVIDER, resp, fallback)
    if not resp.content:
        return {}
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def create_plan(api_key: str, *, company_id: str, product_id: str, amount: float, currency: str,
                title: str, internal_notes: str = "") -> Dict[str, Any]:
    """Plan 'one_time' dédié à un checkout (prix calculé côté serveur)."""
    body = {
        "company_id": company_id,
        "product_id": product_id,
        "plan_type": "one_time",
        "release_method": "buy_now",
        "currency": currency,
        "initial_price": amount,
        "renewal_price": 0,
        "title": title[:100],
        "stock": 999999,
        "one_per_user": False,
        "allow_multiple_quantity": True,
        "internal_notes": internal_notes[:500],
    }
    return _request(api_key, "POST", "/plans", body, fallback="Failed to create Whop plan")


def create_checkout_session(api_key: str, *, plan_id: str, redirect_url: str,
                            metadata: Dict[str, Any], email: str = "") -> Dict[str, Any]:
    body: Dict[str, Any] = {"plan_id": plan_id, "redirect_url": redirect_url, "metadata": metadata}
    if email:
        body["prefill"] = {"email": email}
    return _request(api_key, "POST", "/checkout_sessions", body, fallback="Failed to create Whop checkout session")


def delete_checkout_session(api_key: str, checkout_id: str) -> Dict[str, Any]:
    return _request(api_key, "DELETE", f"/checkout_sessions/{checkout_id}", allow_404=True,
                    fallback="Failed to delete Whop checkout session")


def delete_plan(api_key: str, plan_id: str) -> Dict[str, Any]:
    return _request(api_key, "DELETE", f"/plans/{plan_id}", allow_404=True, fallback="Failed to delete Whop plan")


def hide_plan(api_key: str, plan_id: str) -> Dict[str, Any]:
    return _request(api_key, "POST", f"/plans/{plan_id}", {"visibility": "hidden"}, allow_404=True,
                    fallback="Failed to archive Whop plan")
