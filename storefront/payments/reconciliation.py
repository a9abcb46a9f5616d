# module storefront.payments.reconciliation
"""
Rapprochement d'un paiement confirmé avec le store des commandes.

Séquence (commune à Whop et PayPal, la signature est vérifiée en amont):
  1) métadonnées de la session de checkout fusionnées (montant/options de la session prioritaires)
  2) 'tip': mise à jour du pourboire de la commande existante, aucune création
  3) sinon garde anti-doublon (corrélation, sinon produit + email dans la fenêtre récente)
  4) création de la commande (montant serveur, délai calculé) puis session 'completed'
  5) nettoyage best-effort de la ressource fournisseur (échecs journalisés uniquement)
La garde anti-doublon est une lecture avant écriture; la contrainte d'unicité sur
orders.correlation_id ferme la course restante (DuplicateEvent à l'insertion).
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
import logging

from storefront import config
from storefront.checkout import service as checkout_service
from storefront.orders import service as orders_service
from storefront.orders.delivery import resolve_delivery_minutes
from storefront.orders.models import normalize_email
from storefront.orders.pricing import compute_server_price, quantize
from storefront.payments.models import PaymentEvent
from storefront.utils.errors import DuplicateEvent, InvalidProduct, MalformedPayload

logger = logging.getLogger(__name__)

ORDER_PREFIXES = {"whop": "WHOP", "paypal": "PP"}

# cleanup(correlation_id, session_row) -> None; lève en cas d'échec
Cleanup = Callable[[Optional[str], Optional[Mapping[str, Any]]], None]


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() and result >= 0 else None


def merge_metadata(event_metadata: Mapping[str, Any], stored: Mapping[str, Any]) -> Dict[str, Any]:
    """Métadonnées de l'évènement complétées par la session; la session l'emporte (montant, options)."""
    merged = dict(event_metadata or {})
    merged.update({k: v for k, v in (stored or {}).items() if v not in (None, "")})
    merged["addons"] = (stored or {}).get("addons") or (event_metadata or {}).get("addons") or []
    return merged


def _cleanup_quietly(cleanup: Optional[Cleanup], event: PaymentEvent, session: Optional[Mapping[str, Any]]) -> None:
    if cleanup is None:
        return
    try:
        cleanup(event.correlation_id, session)
    except Exception:
        logger.exception(
            "payments.reconciliation cleanup failed provider=%s correlation_id=%s",
            event.provider, event.correlation_id,
        )


def _resolve_amount(catalog, event: PaymentEvent, stored: Mapping[str, Any], merged: Mapping[str, Any], product_id: str) -> Decimal:
    stored_amount = _decimal(stored.get("amount"))
    if stored_amount is not None:
        return quantize(stored_amount)
    try:
        return compute_server_price(catalog, product_id, merged.get("addons") or [], merged.get("coupon_code"))
    except InvalidProduct as e:
        # Paiement déjà encaissé: on enregistre le montant capturé plutôt que de perdre la commande
        fallback = event.reported_amount if event.reported_amount is not None else Decimal("0")
        logger.warning(
            "payments.reconciliation price recompute failed product_id=%s error=%s, using provider amount=%s",
            product_id, e.message, fallback,
        )
        return quantize(fallback)


def _load_event_session(event: PaymentEvent) -> Tuple[Optional[dict], Dict[str, Any]]:
    """Session par corrélation, sinon session provisoire du plan payé (lien de plan Whop)."""
    session, stored = checkout_service.load_session(event.correlation_id)
    if session is None and event.plan_id:
        plan_key = f"plan_{event.plan_id}"
        if plan_key != event.correlation_id:
            session, stored = checkout_service.load_session(plan_key)
    return session, stored


def _reconcile_tip(event: PaymentEvent, merged: Mapping[str, Any], session_key: Optional[str]) -> Dict[str, Any]:
    order_id = str(merged.get("orderId") or merged.get("order_id") or "").strip()
    if not order_id:
        raise MalformedPayload("Tip payment without orderId")
    amount = _decimal(merged.get("amount"))
    if amount is None:
        amount = event.reported_amount if event.reported_amount is not None else Decimal("0")
    orders_service.mark_tip_paid(order_id, quantize(amount))
    checkout_service.complete_session(session_key)
    return {"received": True, "duplicate": False, "tip": True, "order_id": order_id}


def reconcile_payment(
    event: PaymentEvent,
    catalog,
    cleanup: Optional[Cleanup] = None,
    window_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Crée exactement une commande par paiement confirmé.
    Retour: {"received": True, "duplicate": bool, "order_id": ...} (+ "tip": True pour un pourboire).
    Lève MalformedPayload si l'évènement ne permet pas d'identifier le produit (ou la commande d'un pourboire).
    """
    session, stored = _load_event_session(event)
    session_key = (session or {}).get("checkout_id") or event.correlation_id
    merged = merge_metadata(event.metadata, stored)

    if str(merged.get("type") or "").strip().lower() == "tip":
        return _reconcile_tip(event, merged, session_key)

    product_id = str(
        merged.get("product_id") or merged.get("productId") or event.product_id or (session or {}).get("product_id") or ""
    ).strip()
    if not product_id:
        raise MalformedPayload("Payment event without product_id")
    email = normalize_email(merged.get("email") or event.email)

    window = window_minutes or config.DUPLICATE_WINDOW_MINUTES
    existing = orders_service.find_duplicate_order(event.correlation_id, product_id, email, window)
    if existing:
        logger.info(
            "payments.reconciliation duplicate provider=%s correlation_id=%s order_id=%s",
            event.provider, event.correlation_id, existing.get("order_id"),
        )
        checkout_service.complete_session(session_key)
        return {"received": True, "duplicate": True, "order_id": existing.get("order_id")}

    amount = _resolve_amount(catalog, event, stored, merged, product_id)
    addons = list(merged.get("addons") or [])
    minutes = merged.get("delivery_minutes")
    if not isinstance(minutes, int) or minutes <= 0:
        minutes = resolve_delivery_minutes(catalog.get_product(product_id), addons, config.DEFAULT_DELIVERY_MINUTES)

    extra: Dict[str, Any] = {}
    if merged.get("coupon_code"):
        extra["coupon_code"] = merged["coupon_code"]
    if event.payer_id:
        extra["payer_id"] = event.payer_id

    try:
        created = orders_service.create_order_record(
            order_id=orders_service.generate_order_id(ORDER_PREFIXES.get(event.provider, event.provider.upper())),
            provider=event.provider,
            product_id=product_id,
            email=email,
            amount=amount,
            addons=addons,
            delivery_minutes=minutes,
            correlation_id=event.correlation_id,
            extra=extra,
        )
    except DuplicateEvent as e:
        logger.info("payments.reconciliation duplicate at insert provider=%s correlation_id=%s", event.provider, event.correlation_id)
        checkout_service.complete_session(session_key)
        existing = orders_service.find_duplicate_order(event.correlation_id, product_id, email, window) or {}
        return {"received": True, "duplicate": True, "order_id": e.order_id or existing.get("order_id")}

    checkout_service.complete_session(session_key)
    if extra.get("coupon_code") and not catalog.record_coupon_use(extra["coupon_code"]):
        logger.warning("payments.reconciliation coupon usage not recorded code=%s", extra["coupon_code"])
    _cleanup_quietly(cleanup, event, session)
    return {"received": True, "duplicate": False, "order_id": created["order_id"], "amount": created["amount"]}
