"""
Service catalogue: lecture des produits et settings derrière un cache TTL explicite.

L'instance ProductCatalog est créée par le lifespan (app.state.catalog) et passée
aux services; les chemins d'écriture appellent invalidate_product / invalidate_settings.
"""
from typing import Any, Dict, Optional
from fastapi import Request

from storefront import config
from storefront.catalog import repository
from storefront.utils.cache import TTLCache


class ProductCatalog:
    def __init__(self, product_cache: Optional[TTLCache] = None, settings_cache: Optional[TTLCache] = None):
        self.products = product_cache if product_cache is not None else TTLCache(config.PRODUCT_CACHE_TTL_SECONDS)
        self.settings = settings_cache if settings_cache is not None else TTLCache(config.SETTINGS_CACHE_TTL_SECONDS)

    def get_product(self, product_id: Any) -> Optional[dict]:
        key = f"product:{product_id}"
        return self.products.get_or_load(key, lambda: repository.fetch_product(product_id))

    def get_setting(self, key: str) -> Dict[str, Any]:
        value = self.settings.get_or_load(f"setting:{key}", lambda: repository.fetch_setting(key) or None)
        return value or {}

    def get_active_coupon(self, code: str) -> Optional[dict]:
        # Jamais mis en cache: un coupon désactivé doit cesser de s'appliquer immédiatement
        return repository.fetch_active_coupon(code)

    def record_coupon_use(self, code: str) -> bool:
        return repository.increment_coupon_use(code)

    def invalidate_product(self, product_id: Any = None) -> None:
        if product_id is None:
            self.products.clear()
        else:
            self.products.invalidate(f"product:{product_id}")

    def invalidate_settings(self, key: Optional[str] = None) -> None:
        if key is None:
            self.settings.clear()
        else:
            self.settings.invalidate(f"setting:{key}")


def get_catalog(request: Request) -> ProductCatalog:
    """Dépendance FastAPI: catalogue de l'application (créé au besoin si le lifespan n'a pas tourné)."""
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        catalog = ProductCatalog()
        request.app.state.catalog = catalog
    return catalog
