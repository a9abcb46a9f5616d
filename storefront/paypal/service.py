"""Couche service PayPal (paiement confirmé par le client via capture, webhook optionnel).

- create_order: prix serveur, commande PayPal (intent CAPTURE), session suivie sous l'id PayPal (TTL 30 min).
- capture_order: capture après approbation; COMPLETED -> rapprochement (corrélation = id de commande PayPal).
- handle_webhook: PAYMENT.CAPTURE.COMPLETED rapproché avec la même corrélation, donc une
  capture client + un webhook pour le même paiement ne créent qu'une commande.
"""
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
import json
import logging

from storefront import config
from storefront.checkout import service as checkout_service
from storefront.orders.delivery import resolve_delivery_minutes
from storefront.orders.models import CaptureRequest, CheckoutRequest, normalize_email
from storefront.payments.models import PaymentEvent
from storefront.payments.reconciliation import reconcile_payment
from storefront.payments.signature import signature_from_headers, verify_signature
from storefront.paypal import client
from storefront.utils.errors import InvalidProduct, MalformedPayload, OrderError, ProviderError

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-webhook-signature", "x-paypal-webhook-signature")
CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CUSTOM_ID_MAX = 127


def get_paypal_credentials(catalog) -> Dict[str, str]:
    """Identifiants d'environnement si complets, sinon ligne settings 'paypal'."""
    stored = catalog.get_setting("paypal") if catalog is not None else {}
    if config.PAYPAL_CLIENT_ID and config.PAYPAL_SECRET:
        creds = {"client_id": config.PAYPAL_CLIENT_ID, "secret": config.PAYPAL_SECRET, "mode": config.PAYPAL_MODE}
    else:
        creds = {
            "client_id": str(stored.get("client_id") or ""),
            "secret": str(stored.get("secret") or ""),
            "mode": str(stored.get("mode") or "sandbox"),
        }
    creds["webhook_secret"] = config.PAYPAL_WEBHOOK_SECRET or str(stored.get("webhook_secret") or "")
    return creds


def _require_credentials(creds: Mapping[str, str]) -> None:
    if len(creds.get("client_id") or "") < 10:
        raise OrderError("PayPal Client ID missing or invalid")
    if len(creds.get("secret") or "") < 10:
        raise OrderError("PayPal Secret missing or invalid")


def build_custom_id(product_id: str, email: str, tip_order_id: Optional[str] = None) -> str:
    """
    custom_id PayPal (127 caractères max): données minimales, le détail reste en session.
    Un pourboire porte aussi t="tip" et oid (commande cible), placés en tête avant troncature.
    """
    data: Dict[str, Any] = {"t": "tip", "oid": tip_order_id} if tip_order_id else {}
    data["pid"] = product_id
    data["email"] = (email or "")[:50]
    return json.dumps(data, separators=(",", ":"))[:CUSTOM_ID_MAX]


def _parse_custom_id(raw: Any) -> Dict[str, Any]:
    if not raw or not isinstance(raw, str):
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("paypal.service invalid custom_id")
        return {}
    return data if isinstance(data, dict) else {}


def _custom_metadata(custom: Mapping[str, Any], product_id: Optional[str], email: str) -> Dict[str, Any]:
    """Métadonnées de l'évènement: suffisent à rapprocher un pourboire même sans session locale."""
    metadata: Dict[str, Any] = {k: v for k, v in {"product_id": product_id, "email": email}.items() if v}
    if custom.get("t") == "tip" and custom.get("oid"):
        metadata["type"] = "tip"
        metadata["orderId"] = str(custom["oid"])
    return metadata


def _approve_link(data: Mapping[str, Any]) -> Optional[str]:
    for link in data.get("links") or []:
        if isinstance(link, dict) and link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def create_order(payload: CheckoutRequest, catalog, base_url: str) -> Dict[str, Any]:
    """
    Crée une commande PayPal au prix serveur.
    Retour: {success, order_id, checkout_url, status, amount}
    """
    creds = get_paypal_credentials(catalog)
    _require_credentials(creds)
    product = catalog.get_product(payload.product_id)
    if not product:
        raise InvalidProduct("Product not found", status_code=404)

    amount = checkout_service.compute_checkout_amount(payload, catalog)
    addons = payload.addons_as_dicts()
    delivery_minutes = resolve_delivery_minutes(product, addons, config.DEFAULT_DELIVERY_MINUTES)
    title = str(product.get("title") or "Order")

    token = client.get_access_token(creds["client_id"], creds["secret"], creds["mode"])
    order_payload = {
        "intent": "CAPTURE",
        "purchase_units": [{
            "reference_id": f"prod_{payload.product_id}",
            "description": (f"Tip - {title}" if payload.is_tip else title)[:127],
            "amount": {"currency_code": "USD", "value": f"{amount:.2f}"},
            "custom_id": build_custom_id(payload.product_id, payload.email, payload.order_id if payload.is_tip else None),
        }],
        "application_context": {
            "brand_name": config.PAYPAL_BRAND_NAME,
            "landing_page": "NO_PREFERENCE",
            "user_action": "PAY_NOW",
            "return_url": f"{base_url}/success?provider=paypal&product={payload.product_id}",
            "cancel_url": f"{base_url}/product?id={payload.product_id}&cancelled=1",
        },
    }
    data = client.create_order(token, creds["mode"], order_payload)
    paypal_order_id = data.get("id")
    if not paypal_order_id:
        raise ProviderError("PayPal order id missing in response", provider="paypal")

    metadata = checkout_service.build_session_metadata(payload, product, amount, delivery_minutes)
    checkout_service.open_session(
        payload.product_id, "paypal", metadata, config.PAYPAL_CHECKOUT_TTL_SECONDS,
        checkout_id=paypal_order_id, provider="paypal",
    )
    logger.info("paypal.service.create_order paypal_order_id=%s amount=%s", paypal_order_id, amount)
    return {
        "success": True,
        "order_id": paypal_order_id,
        "checkout_url": _approve_link(data),
        "status": data.get("status"),
        "amount": amount,
    }


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        return None
    return result if result.is_finite() else None


def capture_to_event(paypal_order_id: str, data: Mapping[str, Any]) -> PaymentEvent:
    units = data.get("purchase_units") or [{}]
    unit = units[0] if isinstance(units[0], dict) else {}
    captures = (unit.get("payments") or {}).get("captures") or [{}]
    capture = captures[0] if isinstance(captures[0], dict) else {}
    custom = _parse_custom_id(capture.get("custom_id") or unit.get("custom_id"))
    payer = data.get("payer") if isinstance(data.get("payer"), dict) else {}
    email = normalize_email(custom.get("email") or payer.get("email_address"))
    product_id = str(custom.get("pid") or "") or None
    return PaymentEvent(
        provider="paypal",
        correlation_id=paypal_order_id,
        product_id=product_id,
        email=email,
        metadata=_custom_metadata(custom, product_id, email),
        reported_amount=_to_decimal((capture.get("amount") or {}).get("value")),
        payer_id=payer.get("payer_id"),
        event_type="CAPTURE",
    )


def capture_order(payload: CaptureRequest, catalog) -> Dict[str, Any]:
    """
    Capture la commande PayPal puis crée la commande locale si le paiement est COMPLETED.
    Un appel rejoué (ou précédé du webhook) renvoie duplicate=True sans nouvelle commande.
    """
    creds = get_paypal_credentials(catalog)
    _require_credentials(creds)
    token = client.get_access_token(creds["client_id"], creds["secret"], creds["mode"])
    data = client.capture_order(token, creds["mode"], payload.order_id, request_id=f"capture-{payload.order_id}")
    status = data.get("status")
    if status != "COMPLETED":
        logger.info("paypal.service.capture_order not completed paypal_order_id=%s status=%s", payload.order_id, status)
        return {"success": False, "status": status, "error": "Payment not completed"}

    result = reconcile_payment(capture_to_event(payload.order_id, data), catalog)
    return {
        "success": True,
        "status": "completed",
        "paypal_order_id": payload.order_id,
        "order_id": result.get("order_id"),
        "duplicate": result.get("duplicate", False),
        "tip": result.get("tip", False),
    }


def webhook_to_event(body: Mapping[str, Any]) -> PaymentEvent:
    resource = body.get("resource")
    if not isinstance(resource, dict):
        raise MalformedPayload("Missing resource object")
    related = ((resource.get("supplementary_data") or {}).get("related_ids") or {})
    paypal_order_id = related.get("order_id")
    if not paypal_order_id:
        raise MalformedPayload("Missing related order id")
    custom = _parse_custom_id(resource.get("custom_id"))
    product_id = str(custom.get("pid") or "") or None
    email = normalize_email(custom.get("email"))
    return PaymentEvent(
        provider="paypal",
        correlation_id=str(paypal_order_id),
        product_id=product_id,
        email=email,
        metadata=_custom_metadata(custom, product_id, email),
        reported_amount=_to_decimal((resource.get("amount") or {}).get("value")),
        event_type=CAPTURE_COMPLETED,
    )


def handle_webhook(raw_body: bytes, headers: Mapping[str, str], catalog) -> Dict[str, Any]:
    creds = get_paypal_credentials(catalog)
    verify_signature(raw_body, signature_from_headers(headers, SIGNATURE_HEADERS), creds["webhook_secret"], "paypal")
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise MalformedPayload("Invalid JSON payload")
    if not isinstance(body, dict):
        raise MalformedPayload("Invalid JSON payload")
    event_type = str(body.get("event_type") or "")
    logger.info("paypal.service.handle_webhook type=%s", event_type)
    if event_type == CAPTURE_COMPLETED:
        return reconcile_payment(webhook_to_event(body), catalog)
    return {"received": True, "skipped": True, "type": event_type}


def expire_session(session: Mapping[str, Any]) -> None:
    """Balayage: une commande PayPal non approuvée expire côté PayPal, rien à supprimer."""
    return None
