"""
Adaptateur Stripe: création des sessions Checkout d'acompte et vérification des webhooks.
- Une instance par application, construite par la racine de composition (pas de stripe.api_key global).
- Appels sortants avec délai borné et sans relance automatique: un délai dépassé n'est pas un échec.
- Sans clé secrète (hors production): mode dégradé explicite avec URL factice déterministe.
"""
import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from backend.errors import GatewayError, GatewayTimeout, SignatureVerificationError, ValidationError
from backend.payments.models import CheckoutSession
from backend.quotes.calculator import round2, to_minor_units

logger = logging.getLogger(__name__)

# Tolérance d'horodatage de la signature Stripe (secondes)
WEBHOOK_TOLERANCE = 300


# module backend.payments.stripe_client
class StripeGateway:
    def __init__(
        self,
        *,
        secret_key: str = "",
        webhook_secret: str = "",
        base_url: str = "http://localhost:8000",
        timeout_seconds: float = 10.0,
        allow_placeholder: bool = True,
        client: Optional[Any] = None,
    ):
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.allow_placeholder = allow_placeholder
        self.configured = bool(secret_key) or client is not None
        if client is not None:
            self._client = client
        elif secret_key:
            self._client = stripe.StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=timeout_seconds),
                max_network_retries=0,
            )
        else:
            self._client = None

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    def _quote_url(self, quote_id: str, outcome: str) -> str:
        return f"{self.base_url}/dashboard/quotes/{quote_id}?payment={outcome}"

    def create_checkout_session(
        self,
        *,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str],
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Crée une session Checkout pour l'acompte.
        - amount: montant TTC de l'acompte (unité monétaire), strictement positif
        - metadata: doit contenir quote_id (et quote_number pour le libellé)
        Retour: CheckoutSession(url, session_id, placeholder)
        """
        if amount is None or round2(amount) <= 0:
            raise ValidationError("Le montant de l'acompte doit être supérieur à 0")
        quote_id = metadata.get("quote_id") or ""
        quote_number = metadata.get("quote_number") or quote_id

        if not self.configured:
            if not self.allow_placeholder:
                raise GatewayError("Stripe n'est pas configuré (STRIPE_SECRET_KEY manquant)")
            logger.warning("STRIPE_SECRET_KEY absent: URL de paiement factice pour quote_id=%s", quote_id)
            return CheckoutSession(
                url=self._quote_url(quote_id, "mock"),
                session_id=f"mock_session_{quote_id}_{uuid.uuid4().hex[:12]}",
                placeholder=True,
            )

        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": to_minor_units(amount),
                        "product_data": {
                            "name": f"Acompte - Devis {quote_number}",
                            "description": f"Acompte pour le devis {quote_number}",
                        },
                    },
                }
            ],
            "success_url": self._quote_url(quote_id, "success"),
            "cancel_url": self._quote_url(quote_id, "cancelled"),
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}

        try:
            session = self._client.checkout.sessions.create(params=params, options=options)
        except stripe.APIConnectionError as e:
            logger.warning("stripe.checkout timeout/connexion quote_id=%s: %s", quote_id, e)
            raise GatewayTimeout(
                "Le processeur de paiement n'a pas répondu à temps; la session a pu être créée"
            ) from e
        except stripe.StripeError as e:
            logger.exception("stripe.checkout failed quote_id=%s", quote_id)
            raise GatewayError("Erreur lors de la création du lien de paiement Stripe") from e

        url = getattr(session, "url", None)
        session_id = getattr(session, "id", None)
        if not url or not session_id:
            raise GatewayError("Impossible de créer le lien de paiement")
        return CheckoutSession(url=url, session_id=session_id)

    def verify_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Authentifie un webhook sur le corps brut + en-tête Stripe-Signature.
        Retourne l'événement sous forme de dict; SignatureVerificationError sinon.
        """
        if not self.webhook_secret:
            raise SignatureVerificationError("STRIPE_WEBHOOK_SECRET manquant: webhook non vérifiable")
        if not sig_header:
            raise SignatureVerificationError("Signature manquante")
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE)
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError("Signature invalide") from e
        except ValueError as e:
            raise SignatureVerificationError("Payload invalide") from e
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise SignatureVerificationError("Payload invalide") from e
        if not isinstance(event, dict):
            raise SignatureVerificationError("Payload invalide")
        return event
