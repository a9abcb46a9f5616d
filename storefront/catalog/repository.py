"""
Accès données pour le catalogue (lecture seule): produits, coupons, settings.
"""
from typing import Any, Dict, Optional
import json
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.catalog.repository
def fetch_product(product_id: Any) -> Optional[dict]:
    """
    Récupère un produit par son id (table 'products').
    - Retourne None si absent ou en cas d'erreur.
    """
    if product_id in (None, ""):
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("products")
            .select("*")
            .eq("id", str(product_id))
            .limit(1)
            .execute()
        )
        return res.data[0] if res.data else None
    except Exception:
        logger.exception("catalog.repository.fetch_product failed product_id=%s", product_id)
        return None


def fetch_active_coupon(code: str) -> Optional[dict]:
    """
    Coupon actif par code. Les codes sont stockés en majuscules: la recherche est insensible à la casse.
    """
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("coupons")
            .select(
                "code, discount_type, discount_value, min_order_amount, status, "
                "valid_from, valid_until, max_uses, used_count, product_ids"
            )
            .eq("code", normalized)
            .eq("status", "active")
            .limit(1)
            .execute()
        )
        return res.data[0] if res.data else None
    except Exception:
        logger.exception("catalog.repository.fetch_active_coupon failed code=%s", normalized)
        return None


def fetch_setting(key: str) -> Dict[str, Any]:
    """
    Ligne 'settings' (clé -> valeur JSON). Retourne {} si absente ou illisible.
    """
    try:
        res = (
            supabase_client.get_supabase()
            .table("settings")
            .select("value")
            .eq("key", key)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("catalog.repository.fetch_setting failed key=%s", key)
        return {}
    if not res.data:
        return {}
    value = res.data[0].get("value")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("catalog.repository.fetch_setting invalid JSON key=%s", key)
            return {}
    return value if isinstance(value, dict) else {}


def increment_coupon_use(code: str) -> bool:
    """
    used_count + 1 pour un coupon (lecture puis écriture, sans verrou).
    - Retourne False si le coupon est absent ou en cas d'erreur.
    """
    normalized = (code or "").strip().upper()
    if not normalized:
        return False
    try:
        client = supabase_client.get_service_supabase()
        res = client.table("coupons").select("used_count").eq("code", normalized).limit(1).execute()
        if not res.data:
            return False
        used = int(res.data[0].get("used_count") or 0)
        client.table("coupons").update({"used_count": used + 1}).eq("code", normalized).execute()
        return True
    except Exception:
        logger.exception("catalog.repository.increment_coupon_use failed code=%s", normalized)
        return False
