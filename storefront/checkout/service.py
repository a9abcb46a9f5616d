"""Suivi des sessions de checkout en attente.

Une ligne 'pending' est écrite avant l'affichage de la page hébergée du fournisseur:
elle conserve le montant calculé côté serveur, les options et le délai, que certains
fournisseurs ne renvoient que partiellement dans leur webhook.
Cycle de vie: pending -> completed (commande créée) ou pending -> archived (balayage après expiration).
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
import json
import logging

from storefront.checkout import repository
from storefront.orders.models import CheckoutRequest
from storefront.orders.pricing import compute_server_price, quantize
from storefront.orders.service import encode_payload
from storefront.utils.errors import OrderError, ProviderError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_ARCHIVED = "archived"

# cleaner(session) -> None si la ressource fournisseur est supprimée/masquée (ou déjà absente),
# lève une exception sinon
Cleaner = Callable[[Mapping[str, Any]], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compute_checkout_amount(payload: CheckoutRequest, catalog) -> Decimal:
    """
    Montant facturé pour un checkout.
    - Achat: prix serveur (le champ amount du client est ignoré), doit être > 0.
    - Pourboire: montant choisi par le client (> 0) et commande cible obligatoire.
    """
    if payload.is_tip:
        amount = payload.amount
        if amount is None or not amount.is_finite() or amount <= 0:
            raise OrderError("Invalid tip amount")
        if not payload.order_id:
            raise OrderError("orderId required for a tip")
        return quantize(amount)
    amount = compute_server_price(catalog, payload.product_id, payload.addons_as_dicts(), payload.coupon_code)
    if amount <= 0:
        raise OrderError("Invalid amount. Price must be greater than 0.")
    return amount


def build_session_metadata(payload: CheckoutRequest, product: Mapping[str, Any], amount: Decimal,
                           delivery_minutes: int) -> Dict[str, Any]:
    """Métadonnées conservées localement pendant l'aller-retour chez le fournisseur."""
    metadata: Dict[str, Any] = {
        "product_id": payload.product_id,
        "product_title": str(product.get("title") or ""),
        "email": payload.email,
        "addons": payload.addons_as_dicts(),
        "amount": amount,
        "delivery_minutes": delivery_minutes,
        "type": "tip" if payload.is_tip else "order",
    }
    if payload.is_tip:
        metadata["orderId"] = payload.order_id
    if payload.coupon_code and payload.coupon_code.strip():
        metadata["coupon_code"] = payload.coupon_code.strip().upper()
    return metadata


def open_session(
    product_id: Any,
    plan_id: str,
    metadata: Dict[str, Any],
    ttl_seconds: int,
    checkout_id: Optional[str] = None,
    provider: str = "whop",
    now: Optional[datetime] = None,
) -> str:
    """
    Enregistre une session 'pending' expirant dans ttl_seconds.
    - checkout_id absent: identifiant provisoire plan_<plan_id> (re-clé plus tard).
    - Échec d'écriture journalisé: le rapprochement recalculera le prix côté serveur.
    """
    created = now or _now()
    checkout_id = checkout_id or f"plan_{plan_id}"
    ok = repository.insert_session({
        "checkout_id": checkout_id,
        "product_id": str(product_id),
        "plan_id": plan_id,
        "provider": provider,
        "metadata": encode_payload(metadata),
        "status": STATUS_PENDING,
        "expires_at": (created + timedelta(seconds=int(ttl_seconds))).isoformat(),
        "created_at": created.isoformat(),
    })
    if not ok:
        logger.warning("checkout.service.open_session not persisted checkout_id=%s", checkout_id)
    return checkout_id


def rekey_session(placeholder_id: str, checkout_id: str) -> bool:
    """Remplace l'identifiant provisoire par celui renvoyé par le fournisseur."""
    if not checkout_id or placeholder_id == checkout_id:
        return True
    return repository.update_session(placeholder_id, {"checkout_id": checkout_id})


def load_session(checkout_id: Optional[str]) -> Tuple[Optional[dict], Dict[str, Any]]:
    """Retourne (ligne, metadata décodée). Métadonnées illisibles -> {} (journalisé)."""
    if not checkout_id:
        return None, {}
    row = repository.get_session(checkout_id)
    if not row:
        return None, {}
    raw = row.get("metadata")
    if isinstance(raw, dict):
        return row, raw
    try:
        meta = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("checkout.service.load_session invalid metadata checkout_id=%s", checkout_id)
        meta = {}
    return row, meta if isinstance(meta, dict) else {}


def complete_session(checkout_id: Optional[str], now: Optional[datetime] = None) -> bool:
    if not checkout_id:
        return False
    return repository.update_session(
        checkout_id,
        {"status": STATUS_COMPLETED, "completed_at": (now or _now()).isoformat()},
        only_status=STATUS_PENDING,
    )


def session_provider(session: Mapping[str, Any]) -> str:
    provider = (session.get("provider") or "").strip().lower()
    if provider:
        return provider
    return "paypal" if session.get("plan_id") == "paypal" else "whop"


def archive_expired_sessions(
    batch_limit: int = 50,
    cleaners: Optional[Mapping[str, Cleaner]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Balayage des sessions 'pending' expirées (au plus batch_limit).
    - Supprime/masque la ressource fournisseur via le cleaner du fournisseur.
    - Succès (ou 404 côté fournisseur, géré par le cleaner) -> 'archived'.
    - Échec -> journalisé, la ligne reste 'pending' pour le prochain balayage.
    """
    moment = now or _now()
    sessions = repository.list_expired_pending(moment.isoformat(), max(1, int(batch_limit)))
    archived = 0
    failed = 0
    for session in sessions:
        checkout_id = session.get("checkout_id")
        cleaner = (cleaners or {}).get(session_provider(session))
        try:
            if cleaner is not None:
                cleaner(session)
        except ProviderError as e:
            failed += 1
            logger.warning(
                "checkout.service.archive_expired_sessions provider cleanup failed checkout_id=%s status=%s error=%s",
                checkout_id, e.status_code, e.message,
            )
            continue
        except Exception:
            failed += 1
            logger.exception("checkout.service.archive_expired_sessions cleanup error checkout_id=%s", checkout_id)
            continue
        if repository.update_session(
            checkout_id,
            {"status": STATUS_ARCHIVED, "archived_at": moment.isoformat()},
            only_status=STATUS_PENDING,
        ):
            archived += 1
        else:
            failed += 1
    if sessions:
        logger.info("checkout.service.archive_expired_sessions scanned=%s archived=%s failed=%s", len(sessions), archived, failed)
    return {"scanned": len(sessions), "archived": archived, "failed": failed}
