"""
Module 'payments' (feature-first): point d'entrée public.
Réunit la passerelle Stripe, les événements webhook, le repository des paiements et les cas d'usage
(acompte manuel, session Checkout, réconciliation).
"""

from .models import CheckoutSession, PaymentRecord, PaymentStatus, PaymentType
from .metadata import make_metadata, extract_metadata
from .events import CheckoutCompleted, PaymentFailed, PaymentSucceeded, UnhandledEvent, parse_event
from .stripe_client import StripeGateway
from .repository import PaymentRepository
from .service import mark_deposit_paid, request_checkout
from .webhook import ReconcileResult, handle_webhook, reconcile

__all__ = [
    # models
    "CheckoutSession",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentType",
    # metadata
    "make_metadata",
    "extract_metadata",
    # events
    "CheckoutCompleted",
    "PaymentSucceeded",
    "PaymentFailed",
    "UnhandledEvent",
    "parse_event",
    # stripe
    "StripeGateway",
    # repository
    "PaymentRepository",
    # services
    "mark_deposit_paid",
    "request_checkout",
    "reconcile",
    "handle_webhook",
    "ReconcileResult",
]
