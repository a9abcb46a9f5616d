"""
Accès données pour la feature 'orders' (table 'orders', client service).
"""
from typing import Any, Dict, List, Optional
import logging
from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from storefront.utils.errors import DuplicateEvent

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

# module storefront.orders.repository
def insert_order(row: Dict[str, Any]) -> Optional[dict]:
    """
    Insère une commande et retourne la ligne créée.
    - Violation d'unicité (order_id ou correlation_id): DuplicateEvent.
    - Autre erreur: journalisée, retourne None.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .insert(row)
            .execute()
        )
        return res.data[0] if res.data else dict(row)
    except APIError as e:
        if getattr(e, "code", None) == UNIQUE_VIOLATION:
            logger.info("orders.repository.insert_order duplicate correlation_id=%s", row.get("correlation_id"))
            raise DuplicateEvent("Order already exists for this payment")
        logger.exception("orders.repository.insert_order failed order_id=%s", row.get("order_id"))
        return None
    except Exception:
        logger.exception("orders.repository.insert_order failed order_id=%s", row.get("order_id"))
        return None


def find_order_by_correlation_id(correlation_id: str) -> Optional[dict]:
    if not correlation_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("order_id, product_id, status, created_at")
            .eq("correlation_id", correlation_id)
            .limit(1)
            .execute()
        )
        return res.data[0] if res.data else None
    except Exception:
        logger.exception("orders.repository.find_order_by_correlation_id failed correlation_id=%s", correlation_id)
        return None


def list_recent_orders_for_product(product_id: str, since_iso: str, limit: int = 20) -> List[dict]:
    """Commandes d'un produit créées depuis `since_iso` (plus récentes d'abord)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("order_id, product_id, encrypted_data, created_at")
            .eq("product_id", str(product_id))
            .gte("created_at", since_iso)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_recent_orders_for_product failed product_id=%s", product_id)
        return []


def get_order(order_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("*")
            .eq("order_id", order_id)
            .limit(1)
            .execute()
        )
        return res.data[0] if res.data else None
    except Exception:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        return None


def update_order(order_id: str, fields: Dict[str, Any]) -> bool:
    """Met à jour une commande; True si au moins une ligne modifiée."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update(fields)
            .eq("order_id", order_id)
            .execute()
        )
        return len(res.data or []) > 0
    except Exception:
        logger.exception("orders.repository.update_order failed order_id=%s fields=%s", order_id, sorted(fields))
        return False
