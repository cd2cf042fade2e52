"""
Événements webhook du processeur, modélisés comme une union fermée.
Tout type non supporté devient UnhandledEvent (acquitté sans action).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from backend.payments.metadata import extract_metadata

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def reference(self) -> str:
        return self.session_id


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    payment_intent_id: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def reference(self) -> str:
        return self.payment_intent_id


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    payment_intent_id: str
    failure_message: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def reference(self) -> str:
        return self.payment_intent_id


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    type: str


WebhookEvent = Union[CheckoutCompleted, PaymentSucceeded, PaymentFailed, UnhandledEvent]

# module backend.payments.events
def parse_event(payload: Dict[str, Any]) -> WebhookEvent:
    """Convertit le JSON d'un événement Stripe (déjà authentifié) en variante typée."""
    event_id = str(payload.get("id") or "")
    event_type = str(payload.get("type") or "")
    obj = ((payload.get("data") or {}).get("object")) or {}
    object_id = str(obj.get("id") or "")

    if event_type == CHECKOUT_COMPLETED and object_id:
        return CheckoutCompleted(event_id, object_id, extract_metadata(obj))
    if event_type == PAYMENT_SUCCEEDED and object_id:
        return PaymentSucceeded(event_id, object_id, extract_metadata(obj))
    if event_type == PAYMENT_FAILED and object_id:
        error = obj.get("last_payment_error") or {}
        return PaymentFailed(event_id, object_id, str(error.get("message") or ""), extract_metadata(obj))
    return UnhandledEvent(event_id, event_type or "unknown")
