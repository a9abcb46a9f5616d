"""Couche service des commandes.
Rôles:
- Générer les identifiants (WHOP-..., PP-..., MO...) et sérialiser le payload opaque (encrypted_data).
- Créer la commande issue d'un paiement rapproché ou d'une saisie admin.
- Détecter un doublon: même identifiant de corrélation, sinon même produit + email dans une fenêtre récente.
- Mutations post-achat: pourboire, livraison, demande de révision, lien d'archive.
Les commandes ne sont jamais supprimées ici.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import json
import logging
import secrets
import time

from storefront.orders import repository
from storefront.orders.delivery import clamp_delivery_minutes, delivery_text_for_minutes, due_at
from storefront.utils.errors import OrderError

logger = logging.getLogger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if n == 0:
            return out


def generate_order_id(prefix: str) -> str:
    """Identifiant opaque: <prefix>-<ms>-<hex> (WHOP, PP, ...)."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def generate_manual_order_id() -> str:
    return "MO" + _base36(int(time.time() * 1000)) + secrets.token_hex(2).upper()


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Type non sérialisable: {type(value).__name__}")


def encode_payload(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default, separators=(",", ":"))


def decode_payload(raw: Any) -> Dict[str, Any]:
    """encrypted_data -> dict; {} si vide ou illisible (journalisé)."""
    if isinstance(raw, dict):
        return raw
    if not raw or not isinstance(raw, str) or not raw.startswith("{"):
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("orders.service.decode_payload invalid encrypted_data")
        return {}
    return data if isinstance(data, dict) else {}


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def find_duplicate_order(
    correlation_id: Optional[str],
    product_id: Optional[str],
    email: Optional[str],
    window_minutes: int,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """
    Garde d'idempotence (lecture avant écriture, pas de verrou).
    - correlation_id connu: commande portant ce même identifiant.
    - sinon: commande du même produit créée dans les `window_minutes` dernières minutes avec le même email.
    """
    if correlation_id:
        return repository.find_order_by_correlation_id(correlation_id)
    if not product_id or not email:
        return None
    since = (now or utcnow()) - timedelta(minutes=window_minutes)
    wanted = email.strip().lower()
    for row in repository.list_recent_orders_for_product(str(product_id), since.isoformat()):
        payload_email = str(decode_payload(row.get("encrypted_data")).get("email") or "").strip().lower()
        if payload_email and payload_email == wanted:
            return row
    return None


def create_order_record(
    *,
    order_id: str,
    provider: str,
    product_id: str,
    email: str,
    amount: Decimal,
    addons: List[dict],
    delivery_minutes: int,
    correlation_id: Optional[str] = None,
    status: str = "paid",
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Insère la commande. encrypted_data contient email, montant, produit, options et corrélation.
    - DuplicateEvent remonte tel quel (contrainte d'unicité en base).
    - RuntimeError si l'insertion échoue.
    """
    payload: Dict[str, Any] = {
        "email": email or "",
        "amount": amount,
        "productId": product_id,
        "addons": addons or [],
        "provider": provider,
    }
    if correlation_id:
        payload["correlation_id"] = correlation_id
    payload.update(extra or {})

    row = {
        "order_id": order_id,
        "product_id": str(product_id),
        "correlation_id": correlation_id or None,
        "provider": provider,
        "encrypted_data": encode_payload(payload),
        "status": status,
        "delivery_time_minutes": clamp_delivery_minutes(delivery_minutes),
        "created_at": utcnow().isoformat(),
    }
    created = repository.insert_order(row)
    if not created:
        raise RuntimeError("Impossible de créer la commande")
    logger.info(
        "orders.service.create_order_record order_id=%s provider=%s product_id=%s minutes=%s",
        order_id, provider, product_id, row["delivery_time_minutes"],
    )
    return {"order_id": order_id, "product_id": str(product_id), "amount": amount, "status": status}


def _require_order(order_id: str) -> dict:
    order = repository.get_order(order_id)
    if not order:
        raise OrderError("Order not found", status_code=404)
    return order


def mark_tip_paid(order_id: str, amount: Decimal) -> Dict[str, Any]:
    """Pourboire payé: met à jour tip_paid/tip_amount d'une commande existante (aucune création)."""
    _require_order(order_id)
    if not repository.update_order(order_id, {"tip_paid": True, "tip_amount": float(amount)}):
        raise RuntimeError("Impossible d'enregistrer le pourboire")
    logger.info("orders.service.mark_tip_paid order_id=%s amount=%s", order_id, amount)
    return {"order_id": order_id, "tip_paid": True, "tip_amount": amount}


def create_manual_order(
    product_id: str,
    email: str,
    amount: Decimal,
    addons: List[dict],
    notes: Optional[str],
    status: str,
    delivery_minutes: int,
) -> Dict[str, Any]:
    """Commande saisie par un admin: pas de paiement ni de corrélation fournisseur."""
    if not addons and notes:
        addons = [{"field": "Admin Notes", "value": notes.strip()[:2000]}]
    return create_order_record(
        order_id=generate_manual_order_id(),
        provider="manual",
        product_id=product_id,
        email=email,
        amount=amount,
        addons=addons,
        delivery_minutes=delivery_minutes,
        status=status or "paid",
        extra={"manualOrder": True},
    )


def deliver_order(
    order_id: str,
    video_url: str,
    thumbnail_url: Optional[str] = None,
    embed_url: Optional[str] = None,
    subtitles_url: Optional[str] = None,
) -> Dict[str, Any]:
    _require_order(order_id)
    delivered_at = utcnow().isoformat()
    metadata = {k: v for k, v in {
        "embedUrl": embed_url,
        "subtitlesUrl": subtitles_url,
        "deliveredAt": delivered_at,
    }.items() if v}
    ok = repository.update_order(order_id, {
        "delivered_video_url": video_url,
        "delivered_thumbnail_url": thumbnail_url,
        "delivered_video_metadata": json.dumps(metadata),
        "status": "delivered",
        "delivered_at": delivered_at,
    })
    if not ok:
        raise RuntimeError("Impossible de livrer la commande")
    return {"order_id": order_id, "status": "delivered", "delivered_at": delivered_at}


def request_revision(order_id: str, reason: str) -> Dict[str, Any]:
    order = _require_order(order_id)
    count = int(order.get("revision_count") or 0) + 1
    ok = repository.update_order(order_id, {
        "revision_requested": True,
        "revision_count": count,
        "revision_reason": (reason or "")[:2000],
        "status": "revision",
    })
    if not ok:
        raise RuntimeError("Impossible d'enregistrer la demande de révision")
    logger.info("orders.service.request_revision order_id=%s count=%s", order_id, count)
    return {"order_id": order_id, "status": "revision", "revision_count": count}


def update_archive_link(order_id: str, archive_url: str) -> Dict[str, Any]:
    _require_order(order_id)
    if not repository.update_order(order_id, {"archive_url": archive_url}):
        raise RuntimeError("Impossible de mettre à jour le lien d'archive")
    return {"order_id": order_id, "archive_url": archive_url}


def get_buyer_order(order_id: str) -> Dict[str, Any]:
    """Vue acheteur: colonnes de la commande + email/montant/options décodés + échéance et libellé du délai."""
    order = _require_order(order_id)
    payload = decode_payload(order.get("encrypted_data"))
    view = {k: v for k, v in order.items() if k not in ("encrypted_data", "correlation_id")}
    view.update({
        "email": payload.get("email") or "",
        "amount": payload.get("amount"),
        "addons": payload.get("addons") or [],
        "tip_paid": bool(order.get("tip_paid")),
        "tip_amount": order.get("tip_amount") or 0,
        "delivery_text": delivery_text_for_minutes(order.get("delivery_time_minutes")),
    })
    created_at = _parse_ts(order.get("created_at"))
    if created_at and order.get("delivery_time_minutes"):
        view["due_at"] = due_at(created_at, int(order["delivery_time_minutes"])).isoformat()
    return view
