"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Catalogue produits/settings (cache TTL) sur app.state.catalog.
- FastAPILimiter (Redis), avec options de test (fakeredis).
Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis
  - LOCAL_RATE_LIMIT_FALLBACK=1: fallback local si l'init échoue
"""
import os
import logging
import redis.asyncio as aioredis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from storefront.catalog.service import ProductCatalog

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except ImportError:
    FakeRedis = None


async def _init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    try:
        if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
            app.state.rate_limit_enabled = False
            logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
            return

        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not FakeRedis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
        else:
            app.state.rate_limit_enabled = False
            logger.warning("Rate limiting disabled due to init error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Prépare le catalogue partagé puis configure le rate limiting.
    Un échec de Redis sans fallback désactive le rate limiting sans empêcher le démarrage.
    """
    logger = logging.getLogger("uvicorn.error")
    app.state.catalog = ProductCatalog()
    await _init_rate_limiter(app, logger)
    yield
    app.state.catalog.invalidate_product()
    app.state.catalog.invalidate_settings()
