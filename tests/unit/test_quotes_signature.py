import base64
import pytest

from backend.errors import NotFoundError, PersistenceError, SignatureRejected, ValidationError
from backend.quotes.models import QuoteStatus
from backend.quotes.repository import QuoteRepository
from backend.quotes.signature import MAX_SIGNATURE_BYTES, SignatureStorage, decode_signature, sign_quote

PNG = b"\x89PNG\r\n\x1a\nfake-signature"
PNG_B64 = base64.b64encode(PNG).decode()


@pytest.fixture
def repo(db):
    return QuoteRepository(db)


@pytest.fixture
def storage(db):
    return SignatureStorage(db, "signatures")


def test_decode_data_url():
    content, mime = decode_signature(f"data:image/png;base64,{PNG_B64}")
    assert content == PNG
    assert mime == "image/png"


def test_decode_raw_base64_defaults_to_png():
    assert decode_signature(PNG_B64) == (PNG, "image/png")


@pytest.mark.parametrize("artifact", ["", "   ", "data:text/plain;base64,aGVsbG8=", "not base64 !!"])
def test_decode_rejects_invalid(artifact):
    with pytest.raises(ValidationError):
        decode_signature(artifact)


def test_decode_rejects_oversized():
    big = base64.b64encode(b"0" * (MAX_SIGNATURE_BYTES + 1)).decode()
    with pytest.raises(ValidationError):
        decode_signature(big)


@pytest.mark.parametrize("status", ["draft", "sent"])
def test_sign_quote_stores_artifact_and_signs(repo, storage, db, seed_quote, status):
    row = seed_quote(status=status)
    quote = sign_quote(repo, storage, owner_id="test-user", quote_id=row["id"], artifact=PNG_B64)
    assert quote.status is QuoteStatus.SIGNED
    assert quote.signed_at is not None
    assert quote.signature_ref.startswith(f"signatures/test-user/{row['id']}/")
    assert db.storage.objects[quote.signature_ref] == PNG


@pytest.mark.parametrize("status", ["signed", "deposit_paid", "completed", "canceled"])
def test_sign_quote_rejected_without_upload(repo, storage, db, seed_quote, status):
    row = seed_quote(status=status)
    with pytest.raises(SignatureRejected):
        sign_quote(repo, storage, owner_id="test-user", quote_id=row["id"], artifact=PNG_B64)
    assert db.storage.objects == {}
    assert db.tables["quotes"][0]["status"] == status


def test_sign_quote_of_other_owner(repo, storage, seed_quote):
    row = seed_quote(owner_id="other-user")
    with pytest.raises(NotFoundError):
        sign_quote(repo, storage, owner_id="test-user", quote_id=row["id"], artifact=PNG_B64)


def test_sign_quote_race_removes_uploaded_artifact(repo, storage, db, seed_quote, monkeypatch):
    row = seed_quote(status="sent")
    # Un autre signataire passe entre la lecture et l'écriture
    monkeypatch.setattr(repo, "update_if", lambda *a, **kw: None)
    with pytest.raises(SignatureRejected):
        sign_quote(repo, storage, owner_id="test-user", quote_id=row["id"], artifact=PNG_B64)
    assert db.storage.objects == {}


def test_sign_quote_storage_failure(repo, storage, db, seed_quote):
    row = seed_quote(status="sent")
    db.storage.fail_upload = True
    with pytest.raises(PersistenceError):
        sign_quote(repo, storage, owner_id="test-user", quote_id=row["id"], artifact=PNG_B64)
    assert db.tables["quotes"][0]["status"] == "sent"
