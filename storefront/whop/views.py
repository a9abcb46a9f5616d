# module storefront.whop.views

"""Endpoints Whop.
- /plan-checkout: crée un plan + une session de checkout (prix serveur, rate-limité).
- /webhook: reçoit les évènements Whop (corps brut pour la signature) et crée la commande.
Réponses webhook:
- succès et doublon: 200 {"received": true, ...}
- signature invalide: 401; corps illisible: 400 (le fournisseur réessaiera)
- erreur inattendue: 500 (le fournisseur réessaiera)
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
import logging

from storefront import config
from storefront.catalog.service import ProductCatalog, get_catalog
from storefront.orders.models import CheckoutRequest
from storefront.utils.errors import StorefrontError
from storefront.utils.rate_limit import optional_rate_limit
from storefront.whop import service as whop_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/whop", tags=["Whop API"])


@router.post("/plan-checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_plan_checkout(payload: CheckoutRequest, request: Request, catalog: ProductCatalog = Depends(get_catalog)):
    """Crée un checkout Whop; le montant renvoyé est celui calculé côté serveur."""
    try:
        base_url = config.BASE_URL or str(request.base_url).rstrip("/")
        return whop_service.create_plan_checkout(payload, catalog, base_url)
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("whop.views.create_plan_checkout failed product_id=%s", payload.product_id)
        raise HTTPException(status_code=500, detail=str(e) or "Whop checkout failed")


@router.post("/webhook", include_in_schema=False)
async def whop_webhook(request: Request, catalog: ProductCatalog = Depends(get_catalog)):
    raw_body = await request.body()
    try:
        return await run_in_threadpool(whop_service.handle_webhook, raw_body, request.headers, catalog)
    except StorefrontError:
        raise
    except Exception:
        logger.exception("whop.views.whop_webhook processing failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed")
