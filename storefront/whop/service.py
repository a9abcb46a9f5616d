"""Couche service Whop (paiement piloté par webhook).

Checkout:
- prix recalculé côté serveur (le champ `amount` du client n'est lu que pour un pourboire)
- plan 'one_time' dédié, session suivie localement (plan_<id> puis id de checkout Whop)
- session de checkout Whop avec pré-remplissage email; si elle échoue, le plan reste payable
Webhook:
- signature HMAC du corps brut, puis `payment.succeeded` -> rapprochement
- nettoyage: suppression de la session et du plan dynamique après paiement
"""
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
import json
import logging

from storefront import config
from storefront.checkout import service as checkout_service
from storefront.orders.delivery import resolve_delivery_minutes
from storefront.orders.models import CheckoutRequest, normalize_email
from storefront.payments.models import PaymentEvent
from storefront.payments.reconciliation import reconcile_payment
from storefront.payments.signature import signature_from_headers, verify_signature
from storefront.utils.errors import InvalidProduct, MalformedPayload, OrderError, ProviderError
from storefront.whop import client

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-whop-signature", "whop-signature")
PAYMENT_SUCCEEDED = "payment.succeeded"


def get_whop_settings(catalog) -> Dict[str, str]:
    """Variables d'environnement prioritaires, complétées par la ligne settings 'whop'."""
    stored = catalog.get_setting("whop") if catalog is not None else {}
    return {
        "api_key": config.WHOP_API_KEY or str(stored.get("api_key") or ""),
        "company_id": config.WHOP_COMPANY_ID or str(stored.get("company_id") or ""),
        "default_product_id": config.WHOP_DEFAULT_PRODUCT_ID or str(stored.get("default_product_id") or ""),
        "webhook_secret": config.WHOP_WEBHOOK_SECRET or str(stored.get("webhook_secret") or ""),
    }


def create_plan_checkout(payload: CheckoutRequest, catalog, base_url: str) -> Dict[str, Any]:
    """
    Crée le plan et la session de checkout Whop pour un produit.
    Retour: {success, checkout_id, plan_id, checkout_url, amount, delivery_minutes, expires_in[, warning]}
    """
    settings = get_whop_settings(catalog)
    product = catalog.get_product(payload.product_id)
    if not product:
        raise InvalidProduct("Product not found", status_code=404)

    amount = checkout_service.compute_checkout_amount(payload, catalog)
    addons = payload.addons_as_dicts()
    delivery_minutes = resolve_delivery_minutes(product, addons, config.DEFAULT_DELIVERY_MINUTES)
    whop_product_id = str(product.get("whop_product_id") or settings["default_product_id"] or "")
    if not whop_product_id:
        raise OrderError("Whop product ID not configured for this product")

    title = str(product.get("title") or "Order")
    plan = client.create_plan(
        settings["api_key"],
        company_id=settings["company_id"],
        product_id=whop_product_id,
        amount=float(amount),
        currency=config.WHOP_CURRENCY,
        title=f"Tip - {title}" if payload.is_tip else title,
        internal_notes=f"Auto-generated for product {payload.product_id}",
    )
    plan_id = plan.get("id")
    if not plan_id:
        raise ProviderError("Whop plan id missing in response", provider="whop")

    metadata = checkout_service.build_session_metadata(payload, product, amount, delivery_minutes)

    placeholder = checkout_service.open_session(
        payload.product_id, plan_id, metadata, config.WHOP_CHECKOUT_TTL_SECONDS, provider="whop",
    )
    result: Dict[str, Any] = {
        "success": True,
        "plan_id": plan_id,
        "product_id": payload.product_id,
        "amount": amount,
        "delivery_minutes": delivery_minutes,
        "expires_in": config.WHOP_CHECKOUT_TTL_SECONDS,
    }

    # Métadonnées renvoyées par Whop: à plat, le détail reste dans la session locale
    provider_metadata = {
        "product_id": payload.product_id,
        "email": payload.email,
        "type": metadata["type"],
        "amount": str(amount),
    }
    if payload.is_tip:
        provider_metadata["orderId"] = payload.order_id
    try:
        checkout = client.create_checkout_session(
            settings["api_key"],
            plan_id=plan_id,
            redirect_url=f"{base_url}/success?provider=whop&product={payload.product_id}",
            metadata=provider_metadata,
            email=payload.email,
        )
    except ProviderError as e:
        logger.warning("whop.service.create_plan_checkout checkout session failed plan_id=%s error=%s", plan_id, e.message)
        result.update({
            "checkout_id": placeholder,
            "checkout_url": plan.get("purchase_url") or f"https://whop.com/checkout/{plan_id}",
            "warning": "Checkout session could not be created; plan purchase link returned",
        })
        return result

    checkout_id = checkout.get("id") or placeholder
    checkout_service.rekey_session(placeholder, checkout_id)
    result.update({
        "checkout_id": checkout_id,
        "checkout_url": checkout.get("purchase_url") or plan.get("purchase_url"),
    })
    logger.info("whop.service.create_plan_checkout plan_id=%s checkout_id=%s amount=%s", plan_id, checkout_id, amount)
    return result


def parse_webhook_body(raw_body: bytes) -> Dict[str, Any]:
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise MalformedPayload("Invalid JSON payload")
    if not isinstance(body, dict):
        raise MalformedPayload("Invalid JSON payload")
    return body


def to_payment_event(body: Mapping[str, Any]) -> PaymentEvent:
    data = body.get("data")
    if not isinstance(data, dict):
        raise MalformedPayload("Missing data object")
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    reported = data.get("final_amount")
    try:
        reported_amount = Decimal(str(reported)) if reported not in (None, "") else None
    except ArithmeticError:
        reported_amount = None
    plan = data.get("plan")
    plan_id = str(data.get("plan_id") or (plan.get("id") if isinstance(plan, dict) else plan) or "") or None
    # Paiement via le lien du plan (pas de session Whop): corrélé sur l'id provisoire plan_<id>
    correlation_id = str(data.get("checkout_session_id") or "") or (f"plan_{plan_id}" if plan_id else None)
    return PaymentEvent(
        provider="whop",
        correlation_id=correlation_id,
        plan_id=plan_id,
        product_id=str(metadata.get("product_id") or "") or None,
        email=normalize_email(metadata.get("email") or data.get("email") or user.get("email")),
        metadata=metadata,
        reported_amount=reported_amount if reported_amount is not None and reported_amount.is_finite() else None,
        event_type=str(body.get("type") or ""),
    )


def make_payment_cleanup(api_key: str):
    """Suppression immédiate de la session et du plan dynamique après paiement."""
    def _cleanup(correlation_id: Optional[str], session: Optional[Mapping[str, Any]]) -> None:
        if not api_key:
            return
        errors = []
        if correlation_id and not correlation_id.startswith("plan_"):
            try:
                client.delete_checkout_session(api_key, correlation_id)
            except ProviderError as e:
                errors.append(e)
        plan_id = (session or {}).get("plan_id")
        if plan_id and plan_id != "paypal":
            try:
                client.delete_plan(api_key, plan_id)
            except ProviderError as e:
                errors.append(e)
        if errors:
            raise errors[0]
    return _cleanup


def make_expired_session_cleaner(api_key: str):
    """Balayage: supprime la session Whop puis masque le plan (suppression en repli)."""
    def _clean(session: Mapping[str, Any]) -> None:
        if not api_key:
            raise ProviderError("Whop API key not configured", status_code=500, provider="whop")
        checkout_id = str(session.get("checkout_id") or "")
        if checkout_id and not checkout_id.startswith("plan_"):
            client.delete_checkout_session(api_key, checkout_id)
        plan_id = session.get("plan_id")
        if plan_id:
            try:
                client.hide_plan(api_key, plan_id)
            except ProviderError:
                client.delete_plan(api_key, plan_id)
    return _clean


def handle_webhook(raw_body: bytes, headers: Mapping[str, str], catalog) -> Dict[str, Any]:
    """
    Webhook Whop.
    - InvalidSignature / MalformedPayload remontent (401 / 400).
    - Évènements autres que payment.succeeded: acquittés avec skipped=True.
    """
    settings = get_whop_settings(catalog)
    verify_signature(raw_body, signature_from_headers(headers, SIGNATURE_HEADERS), settings["webhook_secret"], "whop")
    body = parse_webhook_body(raw_body)
    event_type = str(body.get("type") or body.get("action") or "")
    logger.info("whop.service.handle_webhook type=%s", event_type)
    if event_type != PAYMENT_SUCCEEDED:
        return {"received": True, "skipped": True, "type": event_type}
    event = to_payment_event(body)
    return reconcile_payment(event, catalog, cleanup=make_payment_cleanup(settings["api_key"]))
