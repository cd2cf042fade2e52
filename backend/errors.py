"""
Taxonomie des erreurs métier.
Chaque erreur porte son code HTTP et un code court; le handler enregistré dans
app_setup.exceptions les transforme en JSON {"detail", "code"}.
"""
from typing import Optional


class QuoteError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str = "", *, detail: Optional[dict] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.detail = detail or {}


class ValidationError(QuoteError):
    """Entrée invalide (montant non positif, énumération inconnue, ...)."""
    status_code = 400
    code = "validation_error"


class NotFoundError(QuoteError):
    """Ressource absente ou n'appartenant pas à l'utilisateur courant."""
    status_code = 404
    code = "not_found"


class InvalidTransition(QuoteError):
    """Transition refusée par la machine à états du devis."""
    status_code = 400
    code = "invalid_transition"


class AlreadySettled(InvalidTransition):
    code = "already_settled"


class SignatureRejected(InvalidTransition):
    code = "signature_rejected"


class QuoteNotSignedError(InvalidTransition):
    code = "quote_not_signed"


class SignatureVerificationError(QuoteError):
    """Signature webhook absente ou invalide."""
    status_code = 400
    code = "signature_verification_failed"


class GatewayError(QuoteError):
    """Processeur de paiement injoignable ou mal configuré."""
    status_code = 502
    code = "gateway_error"


class GatewayTimeout(GatewayError):
    """
    Délai dépassé vers le processeur: l'issue est inconnue (la session a pu être créée).
    Ne jamais relancer automatiquement, la réconciliation webhook fait foi.
    """
    status_code = 504
    code = "gateway_timeout"


class PersistenceError(QuoteError):
    status_code = 500
    code = "persistence_error"
