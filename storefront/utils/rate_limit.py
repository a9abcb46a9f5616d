from typing import Dict, Any
from urllib.parse import urlparse
from fastapi import Request, Response, HTTPException
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
import os
import time
import hashlib
import logging

logger = logging.getLogger(__name__)


def _client_key_from_request(req: Request) -> str:
    # Priorité: jeton Bearer (hashé) puis IP (X-Forwarded-For si proxy)
    path = req.url.path
    auth = req.headers.get("Authorization", "")
    if auth.startswith("Bearer ") and auth[7:].strip():
        h = hashlib.sha256(auth[7:].strip().encode("utf-8")).hexdigest()[:16]
        return f"token:{h}:{path}"
    forwarded = (req.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    ip = forwarded or (req.client.host if req.client else "local")
    return f"ip:{ip}:{path}"


def optional_rate_limit(times: int, seconds: int):
    """
    Dépendance FastAPI de limitation de débit.
    - LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (app.state._rl_store).
    - app.state.rate_limit_enabled False: pas de limite.
    - Sinon fastapi-limiter (Redis); en cas d'échec du backend, pas de 429.
    """
    async def _identifier(req: Request) -> str:
        return _client_key_from_request(req)

    limiter = RateLimiter(times=times, seconds=seconds, identifier=_identifier)

    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = _client_key_from_request(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Too Many Requests")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return
        if getattr(FastAPILimiter, "redis", None) is None:
            return

        try:
            await limiter(request, response)
        except HTTPException:
            raise
        except Exception as e:
            # Redis indisponible: on laisse passer (activer LOCAL_RATE_LIMIT_FALLBACK=1 en dev)
            logger.warning("rate_limit backend error path=%s error=%s", request.url.path, e)
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    limiter_ready = getattr(FastAPILimiter, "redis", None) is not None
    backend = "redis" if limiter_ready else None

    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": limiter_ready,
        "backend": backend,
        "local_fallback": os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1",
    }

    if backend == "redis":
        redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
        if redis_url:
            p = urlparse(redis_url)
            info["redis"] = {
                "scheme": p.scheme,
                "host": p.hostname,
                "port": p.port,
            }

    return info
