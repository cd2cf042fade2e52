import base64

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nsig").decode()

ITEMS = [
    {"description": "Pose carrelage", "quantity": 2, "unit_price_ht": "100", "vat_rate": "20"},
    {"description": "Fournitures", "quantity": 1, "unit_price_ht": "50", "vat_rate": "10"},
]


def test_create_quote_computes_amounts_server_side(client):
    r = client.post("/api/v1/quotes", json={"client_id": "client-1", "items": ITEMS, "total_ttc": "1.00"})
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "draft"
    assert body["total_ht"] == "250.00"
    assert body["total_vat"] == "45.00"
    assert body["total_ttc"] == "295.00"
    assert body["deposit_percent"] == "30.00"
    assert body["deposit_amount"] == "88.50"
    assert body["deposit_status"] == "pending"
    assert body["quote_number"].startswith("DEV-")
    assert len(body["items"]) == 2


def test_create_quote_validation_errors_are_400(client):
    r = client.post("/api/v1/quotes", json={"client_id": "client-1", "items": []})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"
    r = client.post("/api/v1/quotes", json={"client_id": "client-1", "items": [{**ITEMS[0], "vat_rate": "7"}]})
    assert r.status_code == 400
    r = client.post("/api/v1/quotes", json={"client_id": "client-1", "items": [{**ITEMS[0], "quantity": "1e30"}]})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_create_quote_for_unknown_client_is_404(client):
    r = client.post("/api/v1/quotes", json={"client_id": "nope", "items": ITEMS})
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_list_and_get_are_scoped_to_owner(client, seed_quote):
    mine = seed_quote()
    other = seed_quote(owner_id="other-user")
    listed = client.get("/api/v1/quotes").json()["quotes"]
    assert [q["id"] for q in listed] == [mine["id"]]
    assert client.get(f"/api/v1/quotes/{mine['id']}").status_code == 200
    assert client.get(f"/api/v1/quotes/{other['id']}").status_code == 404


def test_quote_responses_are_not_cached(client, seed_quote):
    row = seed_quote()
    r = client.get(f"/api/v1/quotes/{row['id']}")
    assert "no-store" in r.headers["Cache-Control"]
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_patch_draft_then_refused_after_send(client, seed_quote):
    row = seed_quote()
    r = client.patch(f"/api/v1/quotes/{row['id']}", json={"deposit_percent": "50", "notes": "RDV lundi"})
    assert r.status_code == 200
    assert r.json()["deposit_amount"] == "147.50"
    assert r.json()["notes"] == "RDV lundi"
    assert client.post(f"/api/v1/quotes/{row['id']}/send").json()["status"] == "sent"
    r = client.patch(f"/api/v1/quotes/{row['id']}", json={"notes": "trop tard"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_transition"


def test_full_manual_lifecycle(client, seed_quote, db):
    row = seed_quote()
    qid = row["id"]
    assert client.post(f"/api/v1/quotes/{qid}/send").json()["status"] == "sent"

    signed = client.post(f"/api/v1/quotes/{qid}/sign", json={"signature": f"data:image/png;base64,{PNG_B64}"})
    assert signed.status_code == 200
    assert signed.json()["status"] == "signed"
    assert signed.json()["signed_at"]
    assert signed.json()["signature_ref"] in db.storage.objects

    paid = client.post(f"/api/v1/quotes/{qid}/deposit", json={"method": "virement"})
    assert paid.status_code == 200
    assert paid.json()["deposit_status"] == "paid"
    assert paid.json()["deposit_method"] == "bank_transfer"
    assert paid.json()["status"] == "signed"

    again = client.post(f"/api/v1/quotes/{qid}/deposit", json={"method": "cash"})
    assert again.status_code == 400
    assert again.json()["code"] == "already_settled"

    # L'encaissement manuel ne fait pas avancer le statut: pas de fin de chantier depuis 'signed'
    assert client.post(f"/api/v1/quotes/{qid}/complete").status_code == 400
    assert client.post(f"/api/v1/quotes/{qid}/cancel").json()["status"] == "canceled"
    assert client.post(f"/api/v1/quotes/{qid}/cancel").status_code == 200


def test_sign_twice_is_rejected(client, seed_quote, db):
    row = seed_quote(status="sent")
    assert client.post(f"/api/v1/quotes/{row['id']}/sign", json={"signature": PNG_B64}).status_code == 200
    r = client.post(f"/api/v1/quotes/{row['id']}/sign", json={"signature": PNG_B64})
    assert r.status_code == 400
    assert r.json()["code"] == "signature_rejected"
    assert len(db.storage.objects) == 1


def test_sign_with_invalid_artifact(client, seed_quote):
    row = seed_quote(status="sent")
    r = client.post(f"/api/v1/quotes/{row['id']}/sign", json={"signature": "data:text/html;base64,PGI+"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_deposit_with_unknown_method(client, seed_quote):
    row = seed_quote(status="signed")
    r = client.post(f"/api/v1/quotes/{row['id']}/deposit", json={"method": "bitcoin"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_complete_after_processor_payment(client, seed_quote):
    row = seed_quote(status="deposit_paid", deposit_status="paid")
    r = client.post(f"/api/v1/quotes/{row['id']}/complete")
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert client.post(f"/api/v1/quotes/{row['id']}/cancel").status_code == 400


def test_storage_failure_is_500(client, db, seed_quote):
    seed_quote()
    db.fail_on.add(("quotes", "select"))
    r = client.get("/api/v1/quotes")
    assert r.status_code == 500
    assert r.json()["code"] == "persistence_error"


def test_routes_require_authentication(anonymous_client):
    assert anonymous_client.get("/api/v1/quotes").status_code == 401
    assert anonymous_client.post("/api/v1/payments/checkout", json={"quote_id": "q"}).status_code == 401
