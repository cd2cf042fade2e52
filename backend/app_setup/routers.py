"""
Registre des routers.
- /api/v1/quotes: devis, signature, acompte manuel
- /api/v1/payments: session Checkout, webhook Stripe
- /health: sondes
"""
from fastapi import FastAPI

from backend.health.router import router as health_router
from backend.payments.views import router as payments_router
from backend.quotes.views import router as quotes_router

ROUTERS = (quotes_router, payments_router, health_router)


def register_routers(app: FastAPI) -> None:
    for router in ROUTERS:
        app.include_router(router)
