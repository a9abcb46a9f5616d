"""
Gestionnaires d'exceptions.
- StorefrontError (et sous-classes): {"error": message} avec le code HTTP de l'erreur.
- DuplicateEvent: 200, l'évènement a déjà été traité (le fournisseur ne doit pas réessayer).
- HTTPException: JSON FastAPI standard {"detail": ...}, en-têtes conservés (Retry-After du 429).
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.utils.errors import DuplicateEvent, StorefrontError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DuplicateEvent)
    async def duplicate_event(request: Request, exc: DuplicateEvent):
        return JSONResponse(status_code=200, content={"received": True, "duplicate": True, "order_id": exc.order_id})

    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )
