"""Couche service de la feature Devis.
Rôles:
- Créer un brouillon à partir des lignes saisies (totaux et acompte recalculés côté serveur).
- Modifier un brouillon, l'envoyer, le terminer ou l'annuler via la machine à états.
- Lecture (liste, détail) restreinte au propriétaire.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
import logging

from backend.errors import InvalidTransition, NotFoundError
from backend.quotes import lifecycle
from backend.quotes.calculator import price_quote
from backend.quotes.models import Quote, QuoteCreate, QuoteUpdate
from backend.quotes.repository import QuoteRepository

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def load_owned(repo: QuoteRepository, owner_id: str, quote_id: str, *, with_lines: bool = False) -> Quote:
    """Devis du propriétaire, NotFoundError sinon (un devis d'autrui est « introuvable »)."""
    quote = repo.get(quote_id, owner_id, with_lines=with_lines)
    if not quote:
        raise NotFoundError("Devis non trouvé")
    return quote


def create_quote(
    repo: QuoteRepository,
    owner_id: str,
    payload: QuoteCreate,
    *,
    default_deposit_percent: float = 30,
    validity_days: int = 30,
    now: Optional[datetime] = None,
) -> Quote:
    """Crée un devis 'draft'. Le client doit appartenir au propriétaire."""
    now = now or _now()
    if not repo.get_client(payload.client_id, owner_id):
        raise NotFoundError("Client non trouvé")
    percent = payload.deposit_percent if payload.deposit_percent is not None else Decimal(str(default_deposit_percent))
    draft = price_quote(payload.items, percent)
    quote = repo.insert(
        owner_id=owner_id,
        client_id=payload.client_id,
        quote_number=repo.next_quote_number(owner_id, now.year),
        draft=draft,
        expires_at=now + timedelta(days=validity_days),
        notes=payload.notes,
    )
    logger.info(
        "quotes.create quote_id=%s number=%s total_ttc=%s deposit=%s",
        quote.id, quote.quote_number, quote.total_ttc, quote.deposit_amount,
    )
    return quote


def list_quotes(repo: QuoteRepository, owner_id: str, limit: int = 100) -> List[Quote]:
    return repo.list_for_owner(owner_id, limit=limit)


def get_quote(repo: QuoteRepository, owner_id: str, quote_id: str) -> Quote:
    return load_owned(repo, owner_id, quote_id, with_lines=True)


def update_quote(repo: QuoteRepository, owner_id: str, quote_id: str, payload: QuoteUpdate) -> Quote:
    """
    Modifie un brouillon. Si lignes ou pourcentage changent, tout est recalculé à partir des lignes.
    InvalidTransition si le devis n'est plus en brouillon (y compris s'il a été signé entre-temps).
    """
    quote = load_owned(repo, owner_id, quote_id, with_lines=True)
    lifecycle.ensure_editable(quote)

    extra = {}
    if payload.notes is not None:
        extra["notes"] = payload.notes
    if payload.expires_at is not None:
        extra["expires_at"] = payload.expires_at

    lines = payload.items if payload.items is not None else quote.lines
    percent = payload.deposit_percent if payload.deposit_percent is not None else quote.deposit_percent
    updated = repo.update_draft(quote_id, price_quote(lines, percent), extra)
    if updated is None:
        raise InvalidTransition("Le devis n'est plus modifiable")
    return updated


def _apply(repo: QuoteRepository, quote: Quote, transition: lifecycle.Transition, action: str) -> Quote:
    updated = repo.apply(quote.id, transition)
    if updated is None:
        # L'état a changé entre la lecture et l'écriture
        raise InvalidTransition(f"Transition '{action}' refusée: le devis a changé d'état")
    if not transition.noop:
        logger.info("quotes.%s quote_id=%s status=%s", action, quote.id, updated.status.value)
    return updated


def send_quote(repo: QuoteRepository, owner_id: str, quote_id: str, now: Optional[datetime] = None) -> Quote:
    """draft -> sent. L'envoi effectif de l'email relève d'un autre service."""
    quote = load_owned(repo, owner_id, quote_id)
    return _apply(repo, quote, lifecycle.send(quote, now or _now()), "send")


def complete_quote(repo: QuoteRepository, owner_id: str, quote_id: str, now: Optional[datetime] = None) -> Quote:
    quote = load_owned(repo, owner_id, quote_id)
    return _apply(repo, quote, lifecycle.complete(quote, now or _now()), "complete")


def cancel_quote(repo: QuoteRepository, owner_id: str, quote_id: str, now: Optional[datetime] = None) -> Quote:
    """Annulation; ré-annuler un devis annulé ne fait rien."""
    quote = load_owned(repo, owner_id, quote_id)
    return _apply(repo, quote, lifecycle.cancel(quote, now or _now()), "cancel")
