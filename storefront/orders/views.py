# module storefront.orders.views

"""Endpoints de la feature Commandes.
- GET /{order_id}: vue acheteur (email, montant, options, échéance, pourboire).
- POST /revision: demande de révision par l'acheteur.
- POST /manual, /deliver, /tip, /archive-link: opérations admin (jeton Bearer).
Les erreurs métier (OrderError...) sont rendues par le handler global.
"""
from fastapi import APIRouter, Depends, HTTPException
import logging

from storefront.orders import service as orders_service
from storefront.orders.models import (
    ArchiveLinkRequest,
    DeliverRequest,
    ManualOrderRequest,
    RevisionRequest,
    TipRequest,
)
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])


@router.get("/{order_id}")
def get_buyer_order(order_id: str):
    return {"order": orders_service.get_buyer_order(order_id)}


@router.post("/revision", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def request_revision(payload: RevisionRequest):
    try:
        result = orders_service.request_revision(payload.order_id, payload.reason)
        return {"success": True, **result}
    except RuntimeError as e:
        logger.exception("orders.views.request_revision failed order_id=%s", payload.order_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/manual")
def create_manual_order(payload: ManualOrderRequest, admin: dict = Depends(require_admin)):
    """Commande manuelle (admin): id MO..., options ou note admin, statut 'paid' par défaut."""
    try:
        result = orders_service.create_manual_order(
            product_id=payload.product_id,
            email=payload.email,
            amount=payload.amount,
            addons=[a.model_dump() for a in payload.addons],
            notes=payload.notes,
            status=payload.status,
            delivery_minutes=payload.delivery_time_minutes,
        )
        return {"success": True, "orderId": result["order_id"]}
    except RuntimeError as e:
        logger.exception("orders.views.create_manual_order failed product_id=%s", payload.product_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/deliver")
def deliver_order(payload: DeliverRequest, admin: dict = Depends(require_admin)):
    try:
        result = orders_service.deliver_order(
            payload.order_id,
            payload.video_url,
            thumbnail_url=payload.thumbnail_url,
            embed_url=payload.embed_url,
            subtitles_url=payload.subtitles_url,
        )
        return {"success": True, **result}
    except RuntimeError as e:
        logger.exception("orders.views.deliver_order failed order_id=%s", payload.order_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/tip")
def mark_tip_paid(payload: TipRequest, admin: dict = Depends(require_admin)):
    """Marque un pourboire payé hors checkout (régularisation admin)."""
    if not payload.amount.is_finite() or payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Montant de pourboire invalide")
    try:
        result = orders_service.mark_tip_paid(payload.order_id, payload.amount)
        return {"success": True, **result}
    except RuntimeError as e:
        logger.exception("orders.views.mark_tip_paid failed order_id=%s", payload.order_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/archive-link")
def update_archive_link(payload: ArchiveLinkRequest, admin: dict = Depends(require_admin)):
    try:
        return {"success": True, **orders_service.update_archive_link(payload.order_id, payload.archive_url)}
    except RuntimeError as e:
        logger.exception("orders.views.update_archive_link failed order_id=%s", payload.order_id)
        raise HTTPException(status_code=500, detail=str(e))
