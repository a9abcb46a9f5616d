"""
Registre central des routers (API v1, admin, health).
- Paiements: whop, paypal
- Commandes et checkout: orders, checkout (cleanup admin), catalog (cache admin)
- Health: health_router
"""
from fastapi import FastAPI
from storefront.catalog import views as catalog_views
from storefront.checkout import views as checkout_views
from storefront.health.router import router as health_router
from storefront.orders import views as orders_views
from storefront.paypal import views as paypal_views
from storefront.whop import views as whop_views


def register_routers(app: FastAPI) -> None:
    # Paiements
    app.include_router(whop_views.router)
    app.include_router(paypal_views.router)
    # Commandes, checkout, catalogue
    app.include_router(orders_views.router)
    app.include_router(checkout_views.router)
    app.include_router(catalog_views.router)
    # Health & monitoring
    app.include_router(health_router)
