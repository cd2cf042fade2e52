import hashlib
import hmac
import time
import uuid
import pytest
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from backend.app_setup.container import build_services
from backend.app_setup.factory import create_app
from backend.config import Settings
from backend.utils.security import require_user

TEST_USER_ID = "test-user"
CLIENT_ID = "client-1"
WEBHOOK_SECRET = "whsec_test_secret"


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


# --- Double en mémoire de Supabase (PostgREST + Storage) ---

class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Sous-ensemble du query builder postgrest utilisé par les repositories."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self._order = None
        self._limit = None
        self._count = None

    def select(self, columns="*", count=None):
        self.op = "select"
        self._count = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, patch):
        self.op = "update"
        self.payload = patch
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, col, value):
        self.filters.append(lambda r: str(r.get(col)) == str(value))
        return self

    def neq(self, col, value):
        self.filters.append(lambda r: str(r.get(col)) != str(value))
        return self

    def in_(self, col, values):
        allowed = {str(v) for v in values}
        self.filters.append(lambda r: str(r.get(col)) in allowed)
        return self

    def is_(self, col, value):
        expected = None if value in (None, "null") else value
        self.filters.append(lambda r: r.get(col) is expected)
        return self

    def like(self, col, pattern):
        prefix = pattern.rstrip("%")
        self.filters.append(lambda r: str(r.get(col) or "").startswith(prefix))
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matching(self):
        return [r for r in self.db.tables.setdefault(self.table_name, []) if all(f(r) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        key = (self.table_name, self.op)
        if key in self.db.fail_once:
            self.db.fail_once.discard(key)
            raise RuntimeError(f"boom {self.table_name}.{self.op}")
        if key in self.db.fail_on:
            raise RuntimeError(f"boom {self.table_name}.{self.op}")
        rows = self.db.tables.setdefault(self.table_name, [])
        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            stored = []
            for row in new_rows:
                row = dict(row)
                row.setdefault("id", str(uuid.uuid4()))
                rows.append(row)
                stored.append(dict(row))
            return FakeResult(stored)
        matched = self._matching()
        if self.op == "update":
            for r in matched:
                r.update(self.payload)
            return FakeResult([dict(r) for r in matched])
        if self.op == "delete":
            self.db.tables[self.table_name] = [r for r in rows if r not in matched]
            return FakeResult([dict(r) for r in matched])
        if self._order:
            col, desc = self._order
            matched = sorted(matched, key=lambda r: str(r.get(col) or ""), reverse=desc)
        count = len(matched) if self._count else None
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResult([dict(r) for r in matched], count)


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str):
        self.storage = storage
        self.name = name

    def upload(self, path, content, file_options=None):
        if self.storage.fail_upload:
            raise RuntimeError("storage down")
        self.storage.objects[f"{self.name}/{path}"] = content
        return {"path": path}

    def remove(self, paths):
        for p in paths:
            self.storage.objects.pop(f"{self.name}/{p}", None)
        return []


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail_upload = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, list] = {"quotes": [], "quote_items": [], "payments": [], "clients": []}
        self.storage = FakeStorage()
        self.fail_on = set()
        # échec ponctuel: seule la prochaine exécution de (table, op) lève
        self.fail_once = set()
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)


def sign_webhook(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """En-tête Stripe-Signature (schéma v1: HMAC-SHA256 de '{t}.{payload}')."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


# --- Fixtures ---

@pytest.fixture
def db() -> FakeSupabase:
    fake = FakeSupabase()
    fake.tables["clients"].append(
        {"id": CLIENT_ID, "user_id": TEST_USER_ID, "name": "Jean Dupont", "email": "jean@example.com"}
    )
    return fake


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        stripe_webhook_secret=WEBHOOK_SECRET,
        app_env="test",
        base_url="https://app.example.test",
    )


@pytest.fixture
def services(settings, db):
    return build_services(settings, supabase_client=db, auth_client=MagicMock())


@pytest.fixture
def seed_quote(db):
    """Insère directement un devis (et ses lignes) dans le double Supabase."""
    def _seed(status="draft", deposit_status="pending", owner_id=TEST_USER_ID, **fields) -> Dict[str, Any]:
        quote_id = fields.pop("id", str(uuid.uuid4()))
        row = {
            "id": quote_id,
            "user_id": owner_id,
            "client_id": CLIENT_ID,
            "quote_number": fields.pop("quote_number", "DEV-2026-001"),
            "status": status,
            "total_ht": "250.00",
            "total_vat": "45.00",
            "total_ttc": "295.00",
            "deposit_percent": "30.00",
            "deposit_amount": "88.50",
            "deposit_status": deposit_status,
            "deposit_paid_at": None,
            "deposit_method": None,
            "created_at": "2026-01-10T09:00:00+00:00",
            "updated_at": "2026-01-10T09:00:00+00:00",
        }
        row.update(fields)
        db.tables["quotes"].append(row)
        db.tables["quote_items"].extend([
            {"id": str(uuid.uuid4()), "quote_id": quote_id, "description": "Pose carrelage", "quantity": "2",
             "unit_price_ht": "100", "vat_rate": "20", "sort_order": 0},
            {"id": str(uuid.uuid4()), "quote_id": quote_id, "description": "Fournitures", "quantity": "1",
             "unit_price_ht": "50", "vat_rate": "10", "sort_order": 1},
        ])
        return row
    return _seed


@pytest.fixture
def app(services, monkeypatch):
    monkeypatch.setenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    application = create_app(services)
    # Simuler un utilisateur authentifié pour les endpoints protégés
    fake_user: Dict[str, Any] = {"id": TEST_USER_ID, "email": "test@example.com", "token": "fake-token"}
    application.dependency_overrides[require_user] = lambda: fake_user
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def anonymous_client(app) -> Generator[TestClient, None, None]:
    app.dependency_overrides.pop(require_user, None)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def webhook_signer():
    return sign_webhook
