"""
Middlewares transverses de l'API.
- register_basic_middlewares: CORS, hôtes autorisés, en-têtes X-Forwarded-* du proxy.
- register_security_middleware: en-têtes de sécurité par défaut sur chaque réponse.
- register_no_cache_middleware: aucune mise en cache des devis (montants, liens de paiement).
L'API est authentifiée par jeton (Bearer ou cookie sb_access); le webhook Stripe l'est par sa signature.
"""
from fastapi import Request, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from backend.config import COOKIE_SECURE, CORS_ORIGINS, ALLOWED_HOSTS

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    # API JSON uniquement: aucune ressource à charger
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}
HSTS = "max-age=63072000; includeSubDomains; preload"
NO_CACHE_PREFIXES = ("/api/v1/quotes",)


def register_basic_middlewares(app: FastAPI) -> None:
    hosts = list(ALLOWED_HOSTS)
    if "*" in CORS_ORIGINS:
        hosts.append("*")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=hosts)
    # Render, Nginx, etc.
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


def register_security_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if COOKIE_SECURE:
            response.headers.setdefault("Strict-Transport-Security", HSTS)
        return response


def register_no_cache_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def no_cache_for_quotes(request: Request, call_next):
        response = await call_next(request)
        if request.method == "GET" and request.url.path.startswith(NO_CACHE_PREFIXES):
            response.headers["Cache-Control"] = "no-store, max-age=0"
            response.headers["Pragma"] = "no-cache"
        return response
