"""
Accès données du suivi des sessions de checkout (table 'checkout_sessions').
"""
from typing import Any, Dict, List, Optional
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.checkout.repository
def insert_session(row: Dict[str, Any]) -> bool:
    try:
        (
            supabase_client.get_service_supabase()
            .table("checkout_sessions")
            .insert(row)
            .execute()
        )
        return True
    except Exception:
        logger.exception("checkout.repository.insert_session failed checkout_id=%s", row.get("checkout_id"))
        return False


def get_session(checkout_id: str) -> Optional[dict]:
    if not checkout_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("checkout_sessions")
            .select("*")
            .eq("checkout_id", checkout_id)
            .limit(1)
            .execute()
        )
        return res.data[0] if res.data else None
    except Exception:
        logger.exception("checkout.repository.get_session failed checkout_id=%s", checkout_id)
        return None


def update_session(checkout_id: str, fields: Dict[str, Any], only_status: Optional[str] = None) -> bool:
    """
    Met à jour une session. only_status restreint la mise à jour aux lignes dans cet état
    (transition pending -> completed/archived sans écraser un état terminal).
    """
    try:
        query = (
            supabase_client.get_service_supabase()
            .table("checkout_sessions")
            .update(fields)
            .eq("checkout_id", checkout_id)
        )
        if only_status:
            query = query.eq("status", only_status)
        res = query.execute()
        return len(res.data or []) > 0
    except Exception:
        logger.exception("checkout.repository.update_session failed checkout_id=%s", checkout_id)
        return False


def list_expired_pending(now_iso: str, limit: int) -> List[dict]:
    """Sessions 'pending' expirées, plus anciennes d'abord, au plus `limit`."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("checkout_sessions")
            .select("checkout_id, product_id, plan_id, provider, expires_at, created_at")
            .eq("status", "pending")
            .lt("expires_at", now_iso)
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("checkout.repository.list_expired_pending failed")
        return []
