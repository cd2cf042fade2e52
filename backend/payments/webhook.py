"""
Réconciliation des webhooks Stripe.
1) Vérification de signature sur le corps brut: en cas d'échec, rejet (400) sans aucune écriture.
2) Dispatch sur l'union fermée d'événements (backend.payments.events).
3) Une fois la signature validée, l'événement est toujours acquitté; les erreurs internes sont
   journalisées sur le logger 'backend.payments.reconciliation' pour suivi hors bande.
Idempotence: rejouer un événement produit le même état final qu'un seul traitement.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from backend.errors import InvalidTransition
from backend.payments.events import (
    CHECKOUT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)
from backend.payments.models import PaymentRecord, PaymentStatus
from backend.payments.repository import PaymentRepository
from backend.payments.stripe_client import StripeGateway
from backend.quotes import lifecycle
from backend.quotes.models import QuoteStatus
from backend.quotes.repository import QuoteRepository

logger = logging.getLogger(__name__)
reconciliation_log = logging.getLogger("backend.payments.reconciliation")

APPLIED = "applied"
DUPLICATE = "duplicate"
UNKNOWN_REFERENCE = "unknown_reference"
IGNORED = "ignored"
FAILED_RECORDED = "failed_recorded"
ERROR = "error"

EVENT_TYPES = {
    CheckoutCompleted: CHECKOUT_COMPLETED,
    PaymentSucceeded: PAYMENT_SUCCEEDED,
    PaymentFailed: PAYMENT_FAILED,
}


@dataclass(frozen=True)
class ReconcileResult:
    event_id: str
    event_type: str
    action: str
    quote_id: Optional[str] = None


def _event_type(event: WebhookEvent) -> str:
    if isinstance(event, UnhandledEvent):
        return event.type
    return EVENT_TYPES[type(event)]


def _settle_quote(quotes: QuoteRepository, quote_id: str, now: datetime, *, first_delivery: bool) -> None:
    """Passe le devis à deposit_paid s'il est encore 'signed' (NOOP s'il l'est déjà)."""
    quote = quotes.get(quote_id, with_lines=False)
    if quote is None:
        reconciliation_log.error("webhook: devis introuvable quote_id=%s", quote_id)
        return
    if first_delivery and quote.deposit_is_paid:
        # Acompte déjà marqué payé manuellement: possible double encaissement
        reconciliation_log.warning(
            "webhook: acompte déjà réglé avant confirmation Stripe quote_id=%s method=%s",
            quote_id, quote.deposit_method.value if quote.deposit_method else None,
        )
    try:
        transition = lifecycle.settle_from_processor(quote, now)
    except InvalidTransition:
        reconciliation_log.error(
            "webhook: paiement confirmé pour un devis au statut %s quote_id=%s", quote.status.value, quote_id
        )
        return
    if transition.noop:
        return
    if quotes.apply(quote_id, transition) is None:
        current = quotes.get(quote_id, with_lines=False)
        if current is not None and current.status == QuoteStatus.SIGNED and current.deposit_is_paid:
            # Marquage manuel concurrent: statut seul, son horodatage est conservé
            reconciliation_log.warning("webhook: acompte marqué payé pendant la confirmation quote_id=%s", quote_id)
            current = quotes.apply(quote_id, lifecycle.settle_from_processor(current, now)) or quotes.get(
                quote_id, with_lines=False
            )
        if current is None or current.status != QuoteStatus.DEPOSIT_PAID:
            reconciliation_log.error(
                "webhook: transition deposit_paid perdue quote_id=%s status=%s",
                quote_id, current.status.value if current else None,
            )


def _find_payment(payments: PaymentRepository, event: WebhookEvent) -> Optional[PaymentRecord]:
    """
    Paiement local d'un événement: par référence processeur, sinon par metadata.payment_id.
    Le second cas couvre une session créée pendant un timeout, jamais rattachée à son PaymentRecord.
    """
    payment = payments.find_by_reference(event.reference)
    if payment is not None:
        return payment
    payment_id = event.metadata.get("payment_id")
    if not payment_id:
        return None
    payment = payments.get(payment_id)
    if payment is None:
        return None
    quote_id = event.metadata.get("quote_id")
    if quote_id and quote_id != payment.quote_id:
        reconciliation_log.error(
            "webhook: metadata incohérente payment_id=%s quote_id=%s attendu=%s", payment_id, quote_id, payment.quote_id
        )
        return None
    if not payment.processor_reference and isinstance(event, CheckoutCompleted):
        payment = payments.attach_reference(payment.id, event.reference) or payment
    logger.info("webhook: paiement retrouvé par metadata payment_id=%s ref=%s", payment.id, event.reference)
    return payment


def _on_succeeded(
    quotes: QuoteRepository,
    payments: PaymentRepository,
    event: WebhookEvent,
    now: datetime,
) -> ReconcileResult:
    payment = _find_payment(payments, event)
    if payment is None:
        logger.info("webhook: aucune référence locale pour %s ref=%s", _event_type(event), event.reference)
        return ReconcileResult(event.event_id, _event_type(event), UNKNOWN_REFERENCE)

    first_delivery = False
    if payment.status != PaymentStatus.SUCCEEDED:
        first_delivery = payments.mark_succeeded(payment.id, now) is not None

    # Rejouer sur un paiement déjà réglé reste sans effet mais rattrape un devis non mis à jour
    _settle_quote(quotes, payment.quote_id, now, first_delivery=first_delivery)
    action = APPLIED if first_delivery else DUPLICATE
    logger.info("webhook: %s payment_id=%s quote_id=%s action=%s", _event_type(event), payment.id, payment.quote_id, action)
    return ReconcileResult(event.event_id, _event_type(event), action, payment.quote_id)


def _on_failed(payments: PaymentRepository, event: PaymentFailed) -> ReconcileResult:
    payment = _find_payment(payments, event)
    if payment is None:
        return ReconcileResult(event.event_id, _event_type(event), UNKNOWN_REFERENCE)
    # Le statut du devis reste inchangé: le signataire peut relancer un paiement
    marked = payments.mark_failed(payment.id)
    logger.info(
        "webhook: paiement échoué payment_id=%s quote_id=%s reason=%s", payment.id, payment.quote_id, event.failure_message
    )
    return ReconcileResult(event.event_id, _event_type(event), FAILED_RECORDED if marked else DUPLICATE, payment.quote_id)

# module backend.payments.webhook
def reconcile(
    quotes: QuoteRepository,
    payments: PaymentRepository,
    event: WebhookEvent,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """Applique un événement authentifié à l'état local (PaymentRecord puis devis)."""
    now = now or datetime.now(timezone.utc)
    if isinstance(event, (CheckoutCompleted, PaymentSucceeded)):
        return _on_succeeded(quotes, payments, event, now)
    if isinstance(event, PaymentFailed):
        return _on_failed(payments, event)
    logger.info("webhook: événement non géré type=%s id=%s", event.type, event.event_id)
    return ReconcileResult(event.event_id, event.type, IGNORED)


def handle_webhook(
    gateway: StripeGateway,
    quotes: QuoteRepository,
    payments: PaymentRepository,
    payload: bytes,
    sig_header: Optional[str],
) -> ReconcileResult:
    """
    Point d'entrée du webhook.
    - SignatureVerificationError (400) est la seule erreur propagée, avant toute écriture.
    - Après vérification: toujours un résultat (acquittement 200), même en cas d'erreur interne.
    """
    raw_event = gateway.verify_event(payload, sig_header)
    event = parse_event(raw_event)
    try:
        return reconcile(quotes, payments, event)
    except Exception:
        reconciliation_log.exception(
            "webhook: échec de traitement type=%s id=%s", _event_type(event), getattr(event, "event_id", "")
        )
        return ReconcileResult(getattr(event, "event_id", ""), _event_type(event), ERROR)
