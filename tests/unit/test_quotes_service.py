from datetime import datetime, timezone
from decimal import Decimal
import pytest

from backend.errors import InvalidTransition, NotFoundError, PersistenceError
from backend.quotes import service as quotes_service
from backend.quotes.models import QuoteCreate, QuoteStatus, QuoteUpdate
from backend.quotes.repository import QuoteRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _payload(**kw):
    data = {
        "client_id": "client-1",
        "items": [
            {"description": "Pose", "quantity": 2, "unit_price_ht": "100", "vat_rate": "20"},
            {"description": "Fournitures", "quantity": 1, "unit_price_ht": "50", "vat_rate": "10"},
        ],
    }
    data.update(kw)
    return QuoteCreate(**data)


@pytest.fixture
def repo(db):
    return QuoteRepository(db)


def test_create_quote_computes_totals_and_defaults(repo, db):
    quote = quotes_service.create_quote(repo, "test-user", _payload(), now=NOW)
    assert quote.status is QuoteStatus.DRAFT
    assert quote.quote_number == "DEV-2026-001"
    assert (quote.total_ht, quote.total_vat, quote.total_ttc) == (Decimal("250.00"), Decimal("45.00"), Decimal("295.00"))
    assert quote.deposit_amount == Decimal("88.50")
    assert quote.expires_at == datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)
    second = quotes_service.create_quote(repo, "test-user", _payload(deposit_percent="50"), now=NOW)
    assert second.quote_number == "DEV-2026-002"
    assert second.deposit_amount == Decimal("147.50")


def test_create_quote_for_foreign_client(repo):
    with pytest.raises(NotFoundError):
        quotes_service.create_quote(repo, "other-user", _payload(), now=NOW)


def test_get_quote_of_other_owner_is_not_found(repo, seed_quote):
    row = seed_quote(owner_id="other-user")
    with pytest.raises(NotFoundError):
        quotes_service.get_quote(repo, "test-user", row["id"])


def test_update_quote_recomputes_from_lines(repo, seed_quote):
    row = seed_quote()
    updated = quotes_service.update_quote(repo, "test-user", row["id"], QuoteUpdate(deposit_percent="100"))
    assert updated.total_ttc == Decimal("295.00")
    assert updated.deposit_amount == Decimal("295.00")


def test_update_quote_storage_failure_keeps_totals_and_lines(repo, db, seed_quote):
    row = seed_quote()
    db.fail_on.add(("quote_items", "insert"))
    payload = QuoteUpdate(items=[{"description": "Petit lot", "quantity": 1, "unit_price_ht": "10", "vat_rate": "20"}])
    with pytest.raises(PersistenceError):
        quotes_service.update_quote(repo, "test-user", row["id"], payload)
    db.fail_on.clear()
    quote = quotes_service.get_quote(repo, "test-user", row["id"])
    assert quote.total_ttc == Decimal("295.00")
    assert len(quote.lines) == 2


def test_update_quote_refused_when_not_draft(repo, seed_quote):
    row = seed_quote(status="signed")
    with pytest.raises(InvalidTransition):
        quotes_service.update_quote(repo, "test-user", row["id"], QuoteUpdate(notes="x"))


def test_send_complete_cancel_flow(repo, seed_quote):
    row = seed_quote()
    sent = quotes_service.send_quote(repo, "test-user", row["id"], now=NOW)
    assert sent.status is QuoteStatus.SENT
    assert sent.sent_at == NOW
    # Renvoyer un devis déjà envoyé ne change rien
    assert quotes_service.send_quote(repo, "test-user", row["id"]).sent_at == NOW
    with pytest.raises(InvalidTransition):
        quotes_service.complete_quote(repo, "test-user", row["id"])
    assert quotes_service.cancel_quote(repo, "test-user", row["id"]).status is QuoteStatus.CANCELED
    assert quotes_service.cancel_quote(repo, "test-user", row["id"]).status is QuoteStatus.CANCELED


def test_complete_from_deposit_paid(repo, seed_quote):
    row = seed_quote(status="deposit_paid", deposit_status="paid")
    assert quotes_service.complete_quote(repo, "test-user", row["id"]).status is QuoteStatus.COMPLETED


def test_transition_lost_between_read_and_write(repo, seed_quote, monkeypatch):
    row = seed_quote()
    monkeypatch.setattr(repo, "update_if", lambda *a, **kw: None)
    with pytest.raises(InvalidTransition):
        quotes_service.send_quote(repo, "test-user", row["id"])
