# module backend.utils.rate_limit
"""
Limitation de débit des endpoints sensibles (création de session Checkout).
Backends, par ordre de priorité:
- LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire, partagée par le processus
- fastapi-limiter (Redis) lorsque le lifespan a positionné app.state.rate_limit_enabled à True
Sinon la dépendance laisse passer la requête.
"""
import hashlib
import os
import time
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, Response
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter

from backend.utils.security import extract_token


def _client_key(req: Request) -> str:
    """Clé de comptage: empreinte du jeton d'accès si présent, adresse IP sinon; toujours par chemin."""
    token = extract_token(req)
    if token:
        who = "user:" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
    else:
        who = "ip:" + (req.client.host if req.client else "local")
    return f"{who}:{req.url.path}"


def _local_window_hit(request: Request, key: str, times: int, seconds: int) -> None:
    store: Dict[str, List[float]] = getattr(request.app.state, "_rl_store", None) or {}
    request.app.state._rl_store = store
    now = time.time()
    recent = [t for t in store.get(key, []) if now - t < seconds]
    if len(recent) >= times:
        store[key] = recent
        raise HTTPException(status_code=429, detail="Too Many Requests")
    recent.append(now)
    store[key] = recent


async def _identifier(req: Request) -> str:
    return _client_key(req)


def optional_rate_limit(times: int, seconds: int):
    """Fabrique une dépendance FastAPI limitant à `times` appels par `seconds` secondes."""
    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            _local_window_hit(request, _client_key(request), times, seconds)
            return
        if getattr(request.app.state, "rate_limit_enabled", None) is not True:
            return
        limiter = RateLimiter(times=times, seconds=seconds, identifier=_identifier)
        await limiter(request, response)
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled: Optional[bool] = getattr(request.app.state, "rate_limit_enabled", None)
    redis_ready = getattr(FastAPILimiter, "redis", None) is not None
    if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
        backend = "memory"
    elif redis_ready:
        backend = "redis"
    else:
        backend = None
    return {
        "enabled": None if enabled is None else bool(enabled),
        "ready": redis_ready,
        "backend": backend,
    }
