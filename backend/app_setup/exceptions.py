"""
Gestionnaires d'exceptions utilisés par la factory.
- Erreurs métier (backend.errors.QuoteError): JSON {"detail", "code"} avec le code HTTP porté par l'erreur.
- Corps de requête invalide (pydantic): 400 'validation_error' avec la liste des champs en cause.
- HTTPException: réponse JSON FastAPI standard.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.errors import QuoteError, ValidationError

logger = logging.getLogger(__name__)


def error_payload(exc: QuoteError) -> dict:
    content = {"detail": exc.message, "code": exc.code}
    if exc.detail:
        content["context"] = exc.detail
    return content


def _field_errors(exc: RequestValidationError) -> list:
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers.
    - 4xx: aucune écriture n'a eu lieu, le message est destiné au client.
    - 5xx: stockage ou processeur indisponible (journalisé).
    """
    @app.exception_handler(QuoteError)
    async def quote_error_handler(request: Request, exc: QuoteError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        content = {"detail": "Données invalides", "code": ValidationError.code, "errors": _field_errors(exc)}
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
