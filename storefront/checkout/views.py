# module storefront.checkout.views

"""Maintenance des sessions de checkout (admin).
- POST /cleanup?limit=N: archive les sessions 'pending' expirées et supprime/masque
  la ressource côté fournisseur. Appelé par un cron externe.
"""
from fastapi import APIRouter, Depends, Query

from storefront import config
from storefront.catalog.service import ProductCatalog, get_catalog
from storefront.checkout import service as checkout_service
from storefront.paypal import service as paypal_service
from storefront.utils.security import require_admin
from storefront.whop import service as whop_service

router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


@router.post("/cleanup")
def cleanup_expired_sessions(
    limit: int = Query(default=config.CLEANUP_BATCH_LIMIT, ge=1, le=500),
    catalog: ProductCatalog = Depends(get_catalog),
    admin: dict = Depends(require_admin),
):
    settings = whop_service.get_whop_settings(catalog)
    cleaners = {
        "whop": whop_service.make_expired_session_cleaner(settings["api_key"]),
        "paypal": paypal_service.expire_session,
    }
    result = checkout_service.archive_expired_sessions(batch_limit=limit, cleaners=cleaners)
    return {"success": True, **result}
