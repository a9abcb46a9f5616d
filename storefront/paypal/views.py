# module storefront.paypal.views

"""Endpoints PayPal.
- /create-order: commande PayPal au prix serveur + session suivie (rate-limité).
- /capture: capture après approbation et création de la commande (idempotent).
- /webhook: PAYMENT.CAPTURE.COMPLETED (corps brut pour la signature).
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
import logging

from storefront import config
from storefront.catalog.service import ProductCatalog, get_catalog
from storefront.orders.models import CaptureRequest, CheckoutRequest
from storefront.paypal import service as paypal_service
from storefront.utils.errors import StorefrontError
from storefront.utils.rate_limit import optional_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/paypal", tags=["PayPal API"])


@router.post("/create-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_order(payload: CheckoutRequest, request: Request, catalog: ProductCatalog = Depends(get_catalog)):
    try:
        base_url = config.BASE_URL or str(request.base_url).rstrip("/")
        return paypal_service.create_order(payload, catalog, base_url)
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("paypal.views.create_order failed product_id=%s", payload.product_id)
        raise HTTPException(status_code=500, detail=str(e) or "PayPal checkout failed")


@router.post("/capture", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def capture_order(payload: CaptureRequest, catalog: ProductCatalog = Depends(get_catalog)):
    try:
        return paypal_service.capture_order(payload, catalog)
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("paypal.views.capture_order failed paypal_order_id=%s", payload.order_id)
        raise HTTPException(status_code=500, detail=str(e) or "Payment capture failed")


@router.post("/webhook", include_in_schema=False)
async def paypal_webhook(request: Request, catalog: ProductCatalog = Depends(get_catalog)):
    raw_body = await request.body()
    try:
        return await run_in_threadpool(paypal_service.handle_webhook, raw_body, request.headers, catalog)
    except StorefrontError:
        raise
    except Exception:
        logger.exception("paypal.views.paypal_webhook processing failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed")
