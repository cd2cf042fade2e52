"""
Capture de signature électronique.
- SignatureStorage: dépose l'image de signature dans Supabase Storage et renvoie une référence opaque.
- sign_quote: draft|sent -> signed. Ne crée aucun paiement ni session de checkout.
"""
import base64
import binascii
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from supabase import Client

from backend.errors import NotFoundError, PersistenceError, SignatureRejected, ValidationError
from backend.quotes import lifecycle
from backend.quotes.models import Quote
from backend.quotes.repository import QuoteRepository

logger = logging.getLogger(__name__)

MAX_SIGNATURE_BYTES = 1024 * 1024
_DATA_URL = re.compile(r"^data:(?P<mime>image/(?:png|jpeg|svg\+xml));base64,(?P<data>.+)$", re.DOTALL)
_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/svg+xml": "svg"}


def decode_signature(artifact: str) -> Tuple[bytes, str]:
    """
    Décode une signature (data URL base64 ou base64 brut, PNG par défaut).
    Retourne (octets, type MIME). ValidationError si vide, illisible ou trop lourde.
    """
    raw = (artifact or "").strip()
    if not raw:
        raise ValidationError("La signature est requise")
    mime = "image/png"
    match = _DATA_URL.match(raw)
    if match:
        mime = match.group("mime")
        raw = match.group("data")
    elif raw.startswith("data:"):
        raise ValidationError("Format de signature non supporté")
    try:
        content = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Signature illisible (base64 invalide)")
    if not content:
        raise ValidationError("La signature est vide")
    if len(content) > MAX_SIGNATURE_BYTES:
        raise ValidationError("Signature trop volumineuse")
    return content, mime


class SignatureStorage:
    """Stockage des images de signature (bucket Supabase Storage)."""

    def __init__(self, client: Client, bucket: str):
        self.client = client
        self.bucket = bucket

    def save(self, owner_id: str, quote_id: str, content: bytes, mime: str) -> str:
        path = f"{owner_id}/{quote_id}/{uuid.uuid4().hex}.{_EXTENSIONS.get(mime, 'bin')}"
        try:
            self.client.storage.from_(self.bucket).upload(path, content, {"content-type": mime})
        except Exception as e:
            logger.exception("quotes.signature.save failed quote_id=%s", quote_id)
            raise PersistenceError("Erreur lors de l'enregistrement de la signature") from e
        return f"{self.bucket}/{path}"

    def delete(self, ref: str) -> None:
        path = ref.split("/", 1)[1] if ref.startswith(f"{self.bucket}/") else ref
        try:
            self.client.storage.from_(self.bucket).remove([path])
        except Exception:
            logger.exception("quotes.signature.delete failed ref=%s", ref)

# module backend.quotes.signature
def sign_quote(
    repo: QuoteRepository,
    storage: SignatureStorage,
    *,
    owner_id: str,
    quote_id: str,
    artifact: str,
    now: Optional[datetime] = None,
) -> Quote:
    """
    Signe un devis:
    1) charge le devis (404 si absent ou d'un autre propriétaire)
    2) vérifie qu'il est signable (draft/sent), sinon SignatureRejected
    3) dépose la signature et applique signed_at/signature_ref/status par mise à jour conditionnelle
    """
    now = now or datetime.now(timezone.utc)
    quote = repo.get(quote_id, owner_id, with_lines=False)
    if not quote:
        raise NotFoundError("Devis non trouvé")
    # Validation avant tout effet de bord
    lifecycle.sign(quote, "", now)
    content, mime = decode_signature(artifact)

    ref = storage.save(owner_id, quote_id, content, mime)
    updated = repo.apply(quote_id, lifecycle.sign(quote, ref, now))
    if updated is None:
        storage.delete(ref)
        raise SignatureRejected("Ce devis ne peut plus être signé")
    logger.info("quotes.sign quote_id=%s status=%s", quote_id, updated.status.value)
    return updated
