# module backend.app_setup.lifespan
"""
Cycle de vie de l'application.
Au démarrage:
- services (Supabase, Stripe, repositories) construits depuis l'environnement,
  sauf si app.state.services est déjà renseigné (tests, scripts)
- limiteur de débit fastapi-limiter branché sur Redis
Drapeaux d'environnement du limiteur:
- DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: aucune initialisation, limiteur coupé
- USE_FAKE_REDIS_FOR_TESTS=1: instance fakeredis au lieu de RATE_LIMIT_REDIS_URL
- LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre en mémoire si Redis est injoignable
"""
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from backend.app_setup.container import build_services
from backend.config import load_settings

logger = logging.getLogger("uvicorn.error")

DEFAULT_REDIS_URL = "redis://127.0.0.1:6379/0"


def _redis_connection():
    if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
        from fakeredis.aioredis import FakeRedis  # dépendance de test

        return FakeRedis(decode_responses=True)
    url = os.getenv("RATE_LIMIT_REDIS_URL", DEFAULT_REDIS_URL)
    return redis.from_url(url, encoding="utf-8", decode_responses=True)


async def _init_rate_limiter(app: FastAPI) -> None:
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting off (DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS)")
        return
    try:
        await FastAPILimiter.init(_redis_connection())
    except Exception as exc:
        fallback = os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1"
        app.state.rate_limit_enabled = fallback
        logger.warning(
            "Redis rate limiter unavailable (%s); %s",
            exc,
            "using in-memory window" if fallback else "rate limiting off",
        )
        return
    app.state.rate_limit_enabled = True
    logger.info("Rate limiting on (redis)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        settings = load_settings()
        app.state.services = build_services(settings)
        logger.info("Services ready (env=%s, stripe=%s)", settings.app_env, app.state.services.gateway.configured)
    await _init_rate_limiter(app)
    yield
