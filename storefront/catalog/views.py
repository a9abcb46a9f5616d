# module storefront.catalog.views
"""Endpoints de maintenance du catalogue (admin).
- /cache/invalidate: purge le cache produits/settings après une modification hors de ce service.
"""
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storefront.catalog.service import ProductCatalog, get_catalog
from storefront.utils.security import require_admin

router = APIRouter(prefix="/api/v1/catalog", tags=["Catalog API"])


class InvalidateRequest(BaseModel):
    product_id: Optional[str] = Field(default=None)
    setting_key: Optional[str] = Field(default=None)


@router.post("/cache/invalidate")
def invalidate_cache(
    payload: InvalidateRequest,
    catalog: ProductCatalog = Depends(get_catalog),
    admin: dict = Depends(require_admin),
):
    if payload.product_id is None and payload.setting_key is None:
        catalog.invalidate_product()
        catalog.invalidate_settings()
    else:
        if payload.product_id is not None:
            catalog.invalidate_product(payload.product_id)
        if payload.setting_key is not None:
            catalog.invalidate_settings(payload.setting_key)
    return {"success": True}
