# module backend.quotes.views

"""Endpoints de la feature Devis (/api/v1/quotes).
- CRUD d'un brouillon: création, liste, détail, modification.
- Transitions: envoi, signature, acompte manuel, fin de chantier, annulation.
Sécurité:
- require_user: chaque devis est filtré sur l'utilisateur courant (404 pour un devis d'autrui).
Erreurs:
- Les erreurs métier (backend.errors) remontent telles quelles et sont converties par le handler global.
"""
from fastapi import APIRouter, Depends
from typing import Any, Dict

from backend.app_setup.container import Services, get_services
from backend.payments import service as payments_service
from backend.quotes import service as quotes_service
from backend.quotes.models import DepositRequest, QuoteCreate, QuoteUpdate, SignRequest
from backend.quotes.signature import sign_quote
from backend.utils.security import require_user

router = APIRouter(prefix="/api/v1/quotes", tags=["Quotes API"])


@router.post("", status_code=201)
def create_quote(
    payload: QuoteCreate,
    user: Dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Crée un brouillon; totaux et acompte sont calculés côté serveur à partir des lignes."""
    settings = services.settings
    quote = quotes_service.create_quote(
        services.quotes,
        user["id"],
        payload,
        default_deposit_percent=settings.default_deposit_percent,
        validity_days=settings.quote_validity_days,
    )
    return quote.to_public()


@router.get("")
def list_quotes(user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    quotes = quotes_service.list_quotes(services.quotes, user["id"])
    return {"quotes": [q.to_public() for q in quotes]}


@router.get("/{quote_id}")
def get_quote(quote_id: str, user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    return quotes_service.get_quote(services.quotes, user["id"], quote_id).to_public()


@router.patch("/{quote_id}")
def update_quote(
    quote_id: str,
    payload: QuoteUpdate,
    user: Dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Modification d'un brouillon uniquement (400 sinon)."""
    return quotes_service.update_quote(services.quotes, user["id"], quote_id, payload).to_public()


@router.post("/{quote_id}/send")
def send_quote(quote_id: str, user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    return quotes_service.send_quote(services.quotes, user["id"], quote_id).to_public()


@router.post("/{quote_id}/sign")
def sign(
    quote_id: str,
    payload: SignRequest,
    user: Dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """
    Signature du devis.
    - Corps: {"signature": "<data URL ou base64>"}
    - 400 si le devis n'est ni 'draft' ni 'sent' (aucun fichier conservé dans ce cas).
    """
    quote = sign_quote(
        services.quotes,
        services.signatures,
        owner_id=user["id"],
        quote_id=quote_id,
        artifact=payload.signature,
    )
    return quote.to_public()


@router.post("/{quote_id}/deposit")
def mark_deposit(
    quote_id: str,
    payload: DepositRequest,
    user: Dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """
    Marque l'acompte payé hors Stripe (virement, espèces, chèque, autre).
    - 400 si déjà payé; le statut du devis n'est pas modifié.
    """
    quote = payments_service.mark_deposit_paid(
        services.quotes,
        owner_id=user["id"],
        quote_id=quote_id,
        method=payload.method,
        require_signed=services.settings.manual_deposit_requires_signed,
    )
    return quote.to_public()


@router.post("/{quote_id}/complete")
def complete_quote(quote_id: str, user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    return quotes_service.complete_quote(services.quotes, user["id"], quote_id).to_public()


@router.post("/{quote_id}/cancel")
def cancel_quote(quote_id: str, user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    return quotes_service.cancel_quote(services.quotes, user["id"], quote_id).to_public()


@router.get("/{quote_id}/payments")
def list_quote_payments(quote_id: str, user: Dict[str, Any] = Depends(require_user), services: Services = Depends(get_services)):
    payments = payments_service.list_payments(services.quotes, services.payments, owner_id=user["id"], quote_id=quote_id)
    return {"payments": [p.to_public() for p in payments]}
