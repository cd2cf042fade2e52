"""
Cas d'usage 'payments': règlement de l'acompte par deux chemins indépendants.
- Manuel (virement, espèces, chèque, autre): mark_deposit_paid.
- Processeur (Stripe Checkout): request_checkout enregistre un PaymentRecord 'pending' puis crée la session;
  seul le webhook (backend.payments.webhook) confirme ensuite le paiement.
Les deux chemins écrivent via des mises à jour conditionnelles: un acompte payé ne l'est qu'une fois.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from uuid import uuid4
import logging

from backend.errors import AlreadySettled, GatewayError, GatewayTimeout, InvalidTransition, PersistenceError, ValidationError
from backend.payments.metadata import make_metadata
from backend.payments.models import CheckoutSession, PaymentRecord
from backend.payments.repository import PaymentRepository
from backend.payments.stripe_client import StripeGateway
from backend.quotes import lifecycle
from backend.quotes.models import DepositMethod, Quote, QuoteStatus
from backend.quotes.repository import QuoteRepository
from backend.quotes.service import load_owned

logger = logging.getLogger(__name__)


def parse_method(value: Any) -> DepositMethod:
    try:
        return DepositMethod.parse(value)
    except ValueError:
        valid = ", ".join(m.value for m in DepositMethod)
        raise ValidationError(f"Méthode de paiement invalide (valeurs acceptées: {valid})")


def mark_deposit_paid(
    quotes: QuoteRepository,
    *,
    owner_id: str,
    quote_id: str,
    method: Any,
    require_signed: bool = False,
    now: Optional[datetime] = None,
) -> Quote:
    """
    Marque l'acompte payé hors processeur.
    - ValidationError si la méthode est inconnue, NotFoundError si le devis est introuvable.
    - AlreadySettled si l'acompte est déjà payé, y compris quand un webhook l'a réglé entre-temps.
    """
    deposit_method = parse_method(method)
    now = now or datetime.now(timezone.utc)
    quote = load_owned(quotes, owner_id, quote_id)
    transition = lifecycle.mark_deposit_paid(quote, deposit_method, now, require_signed=require_signed)

    updated = quotes.apply(quote_id, transition)
    if updated is None:
        current = quotes.get(quote_id, owner_id, with_lines=False)
        if current is not None and current.deposit_is_paid:
            raise AlreadySettled("L'acompte est déjà marqué comme payé")
        raise InvalidTransition("Le devis a changé d'état, acompte non enregistré")
    logger.info("payments.deposit.manual quote_id=%s method=%s", quote_id, deposit_method.value)
    return updated


def _is_placeholder_reference(reference: str) -> bool:
    return reference.startswith("mock_session_")


def request_checkout(
    quotes: QuoteRepository,
    payments: PaymentRepository,
    gateway: StripeGateway,
    *,
    owner_id: str,
    quote_id: str,
    currency: str = "eur",
    reuse_pending: bool = False,
) -> Tuple[CheckoutSession, PaymentRecord]:
    """
    Crée un lien de paiement d'acompte pour un devis signé.
    1) QuoteNotSignedError si le devis n'est pas 'signed' (aucun PaymentRecord créé)
    2) PaymentRecord 'pending' sans référence, avant tout appel au processeur
    3) session Checkout (clé d'idempotence et metadata.payment_id = id du PaymentRecord)
    4) référence de session + payment_link_url sur le devis
    GatewayTimeout: le PaymentRecord reste 'pending', le webhook le retrouve par metadata.payment_id.
    Le statut du devis n'est pas modifié ici.
    """
    quote = load_owned(quotes, owner_id, quote_id)
    lifecycle.ensure_checkout_allowed(quote)

    if reuse_pending and quote.payment_link_url:
        existing = payments.find_pending_deposit(quote_id)
        if existing is not None and existing.processor_reference:
            logger.info("payments.checkout reuse quote_id=%s payment_id=%s", quote_id, existing.id)
            session = CheckoutSession(
                url=quote.payment_link_url,
                session_id=existing.processor_reference,
                placeholder=_is_placeholder_reference(existing.processor_reference),
            )
            return session, existing

    if quote.deposit_amount <= 0:
        raise ValidationError("Le montant de l'acompte doit être supérieur à 0")

    client = quotes.get_client(quote.client_id, owner_id) or {}
    payment = payments.create_pending(payment_id=str(uuid4()), quote_id=quote.id, amount=quote.deposit_amount)
    payment_id = payment.id
    try:
        session = gateway.create_checkout_session(
            amount=quote.deposit_amount,
            currency=currency,
            customer_email=client.get("email"),
            metadata=make_metadata(
                quote_id=quote.id,
                quote_number=quote.quote_number,
                payment_id=payment_id,
                customer_name=client.get("name"),
            ),
            idempotency_key=f"deposit-{payment_id}",
        )
    except GatewayTimeout:
        # Issue inconnue: la session a pu être créée, la réconciliation tranchera
        logger.warning("payments.checkout timeout payment_id=%s quote_id=%s left pending", payment_id, quote.id)
        raise
    except (GatewayError, ValidationError):
        payments.mark_failed(payment_id)
        raise

    try:
        payment = payments.attach_reference(payment_id, session.session_id) or payment
    except PersistenceError:
        # Le webhook retrouvera le paiement par metadata.payment_id
        logger.error(
            "payments.checkout reference not stored session_id=%s payment_id=%s quote_id=%s",
            session.session_id, payment_id, quote.id,
        )
        raise

    if quotes.update_if(quote.id, {"payment_link_url": session.url}, from_statuses=(QuoteStatus.SIGNED,)) is None:
        logger.warning("payments.checkout quote changed state before link update quote_id=%s", quote.id)

    logger.info(
        "payments.checkout quote_id=%s payment_id=%s session_id=%s placeholder=%s",
        quote.id, payment.id, session.session_id, session.placeholder,
    )
    return session, payment


def list_payments(quotes: QuoteRepository, payments: PaymentRepository, *, owner_id: str, quote_id: str) -> List[PaymentRecord]:
    """Historique des paiements d'un devis du propriétaire (NotFoundError sinon)."""
    quote = load_owned(quotes, owner_id, quote_id)
    return payments.list_for_quote(quote.id)
