"""
Machine à états du devis.

    draft -> sent -> signed -> deposit_paid -> completed
    draft | sent | signed | deposit_paid -> canceled

Chaque fonction valide la transition sur l'état observé et renvoie une Transition
(patch + garde) sans rien modifier. Le repository applique le patch par mise à jour
conditionnelle: si la garde ne correspond plus en base, rien n'est écrit.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from backend.errors import AlreadySettled, InvalidTransition, QuoteNotSignedError, SignatureRejected
from backend.quotes.models import DepositMethod, DepositStatus, Quote, QuoteStatus

TERMINAL_STATUSES = (QuoteStatus.COMPLETED, QuoteStatus.CANCELED)
ACTIVE_STATUSES = (QuoteStatus.DRAFT, QuoteStatus.SENT, QuoteStatus.SIGNED, QuoteStatus.DEPOSIT_PAID)
SIGNABLE_STATUSES = (QuoteStatus.DRAFT, QuoteStatus.SENT)

TRANSITIONS: Dict[QuoteStatus, Tuple[QuoteStatus, ...]] = {
    QuoteStatus.DRAFT: (QuoteStatus.SENT, QuoteStatus.SIGNED, QuoteStatus.CANCELED),
    QuoteStatus.SENT: (QuoteStatus.SIGNED, QuoteStatus.CANCELED),
    QuoteStatus.SIGNED: (QuoteStatus.DEPOSIT_PAID, QuoteStatus.CANCELED),
    QuoteStatus.DEPOSIT_PAID: (QuoteStatus.COMPLETED, QuoteStatus.CANCELED),
    QuoteStatus.COMPLETED: (),
    QuoteStatus.CANCELED: (),
}


@dataclass(frozen=True)
class Transition:
    """Modification à appliquer si, en base, le statut est toujours dans from_statuses."""
    patch: Dict[str, Any] = field(default_factory=dict)
    from_statuses: Tuple[QuoteStatus, ...] = ()
    require_deposit_unpaid: bool = False
    noop: bool = False


NOOP = Transition(noop=True)


def can_transition(current: QuoteStatus, target: QuoteStatus) -> bool:
    return target in TRANSITIONS.get(current, ())


def is_terminal(status: QuoteStatus) -> bool:
    return status in TERMINAL_STATUSES

# module backend.quotes.lifecycle
def ensure_editable(quote: Quote) -> None:
    """Seuls les brouillons acceptent des modifications de lignes/totaux."""
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidTransition(
            f"Le devis {quote.quote_number or quote.id} n'est plus modifiable (statut {quote.status.value})"
        )


def send(quote: Quote, now: datetime) -> Transition:
    if quote.status == QuoteStatus.SENT:
        return NOOP
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidTransition(f"Impossible d'envoyer un devis au statut {quote.status.value}")
    return Transition(
        patch={"status": QuoteStatus.SENT.value, "sent_at": now},
        from_statuses=(QuoteStatus.DRAFT,),
    )


def sign(quote: Quote, signature_ref: str, now: datetime) -> Transition:
    if quote.status not in SIGNABLE_STATUSES:
        raise SignatureRejected("Ce devis ne peut plus être signé", detail={"status": quote.status.value})
    return Transition(
        patch={"status": QuoteStatus.SIGNED.value, "signature_ref": signature_ref, "signed_at": now},
        from_statuses=SIGNABLE_STATUSES,
    )


def mark_deposit_paid(
    quote: Quote,
    method: DepositMethod,
    now: datetime,
    *,
    require_signed: bool = False,
) -> Transition:
    """
    Encaissement manuel de l'acompte.
    - Refusé si l'acompte est déjà payé (AlreadySettled) ou si le devis est terminal.
    - require_signed: n'autorise que les devis signés (désactivé par défaut).
    Le statut du devis n'est pas modifié.
    """
    if quote.deposit_is_paid:
        raise AlreadySettled("L'acompte est déjà marqué comme payé")
    if is_terminal(quote.status):
        raise InvalidTransition(f"Devis au statut {quote.status.value}: acompte non modifiable")
    if require_signed and quote.status != QuoteStatus.SIGNED:
        raise QuoteNotSignedError("Le devis doit être signé avant l'encaissement de l'acompte")
    return Transition(
        patch={
            "deposit_status": DepositStatus.PAID.value,
            "deposit_paid_at": now,
            "deposit_method": method.value,
        },
        from_statuses=(QuoteStatus.SIGNED,) if require_signed else ACTIVE_STATUSES,
        require_deposit_unpaid=True,
    )


def ensure_checkout_allowed(quote: Quote) -> None:
    """Un lien de paiement ne peut être demandé que pour un devis signé dont l'acompte reste dû."""
    if quote.status != QuoteStatus.SIGNED:
        raise QuoteNotSignedError(
            "Le devis doit être signé avant de créer un lien de paiement",
            detail={"status": quote.status.value},
        )
    if quote.deposit_is_paid:
        raise AlreadySettled("L'acompte est déjà marqué comme payé")


def settle_from_processor(quote: Quote, now: datetime) -> Transition:
    """
    Paiement confirmé par le processeur: signed -> deposit_paid.
    Déjà deposit_paid: NOOP. Tout autre statut: InvalidTransition.
    Acompte encore dû à la lecture: l'écriture de deposit_paid_at exige qu'il le soit toujours en base,
    sinon un marquage manuel concurrent garde son horodatage.
    """
    if quote.status == QuoteStatus.DEPOSIT_PAID:
        return NOOP
    if quote.status != QuoteStatus.SIGNED:
        raise InvalidTransition(f"Paiement reçu pour un devis au statut {quote.status.value}")
    patch: Dict[str, Any] = {
        "status": QuoteStatus.DEPOSIT_PAID.value,
        "deposit_status": DepositStatus.PAID.value,
    }
    if quote.deposit_is_paid or quote.deposit_paid_at is not None:
        return Transition(patch=patch, from_statuses=(QuoteStatus.SIGNED,))
    patch["deposit_paid_at"] = now
    return Transition(patch=patch, from_statuses=(QuoteStatus.SIGNED,), require_deposit_unpaid=True)


def complete(quote: Quote, now: datetime) -> Transition:
    if quote.status != QuoteStatus.DEPOSIT_PAID:
        raise InvalidTransition(f"Impossible de terminer un devis au statut {quote.status.value}")
    return Transition(
        patch={"status": QuoteStatus.COMPLETED.value},
        from_statuses=(QuoteStatus.DEPOSIT_PAID,),
    )


def cancel(quote: Quote, now: Optional[datetime] = None) -> Transition:
    if quote.status == QuoteStatus.CANCELED:
        return NOOP
    if quote.status == QuoteStatus.COMPLETED:
        raise InvalidTransition("Un devis terminé ne peut pas être annulé")
    return Transition(
        patch={"status": QuoteStatus.CANCELED.value},
        from_statuses=ACTIVE_STATUSES,
    )
