"""
Métadonnées Stripe associées aux sessions d'acompte (quote_id, quote_number, payment_id).
"""
from typing import Any, Dict, Optional

# Limite Stripe: 500 caractères par valeur de metadata
_MAX_VALUE = 500

# module backend.payments.metadata
def make_metadata(*, quote_id: str, quote_number: str, payment_id: str, customer_name: Optional[str] = None) -> Dict[str, str]:
    """
    Sérialise les métadonnées de la session d'acompte.
    - Toutes les valeurs sont des chaînes tronquées à la limite Stripe.
    """
    meta = {
        "quote_id": quote_id,
        "quote_number": quote_number,
        "payment_id": payment_id,
        "customer_name": customer_name or "",
    }
    return {k: str(v)[:_MAX_VALUE] for k, v in meta.items()}


def extract_metadata(data_object: Dict[str, Any]) -> Dict[str, str]:
    """
    Extrait les métadonnées d'un objet Stripe (session ou payment intent) issu d'un webhook.
    Tolérant: renvoie {} si absentes.
    """
    meta = (data_object or {}).get("metadata") if isinstance(data_object, dict) else None
    return {str(k): str(v) for k, v in (meta or {}).items()}
