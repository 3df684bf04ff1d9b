"""HTTP contract: status codes, camelCase bodies and the `{error}` shape."""

import pytest
from fastapi.testclient import TestClient

from cupfortune.common.errors import PredictionError
from cupfortune.services.api.app import create_app
from cupfortune.services.orchestrator.policy import SubmissionPolicy

from conftest import PNG_DATA_URL

ALICE_AUTH = {"Authorization": "Bearer user_alice-token"}
BOB_AUTH = {"Authorization": "Bearer user_bob-token"}
FORTUNE_BODY = {"images": [PNG_DATA_URL], "name": "Sara", "age": 29, "intent": "career", "about": ""}


@pytest.fixture
def client(make_orchestrator, fakes):
    app = create_app(make_orchestrator(), fakes.identity)
    return TestClient(app)


def _submit(client, headers=ALICE_AUTH):
    resp = client.post("/api/fortune", json=FORTUNE_BODY, headers=headers)
    assert resp.status_code == 200
    return resp.json()["fortuneId"]


def test_submit_and_process_round(client):
    resp = client.post("/api/fortune", json=FORTUNE_BODY, headers=ALICE_AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    fortune_id = body["fortuneId"]

    resp = client.post("/api/fortune/process", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    assert resp.status_code == 200
    assert resp.json()["prediction"] == "Good things ahead"

    resp = client.get("/api/fortune/process", params={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    assert resp.json() == {"status": "completed", "prediction": "Good things ahead"}


def test_missing_images_is_400(client):
    resp = client.post("/api/fortune", json={**FORTUNE_BODY, "images": []}, headers=ALICE_AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"error": "At least one image is required"}


def test_malformed_body_is_400(client):
    resp = client.post("/api/fortune", json={**FORTUNE_BODY, "images": "not-a-list"}, headers=ALICE_AUTH)

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request body"


def test_missing_fortune_id_is_400(client):
    resp = client.post("/api/fortune/process", json={}, headers=ALICE_AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Fortune ID is required"}


def test_invalid_token_is_401(client):
    resp = client.post("/api/fortune", json=FORTUNE_BODY, headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthorized"


def test_other_owner_gets_401_and_no_fields(client):
    fortune_id = _submit(client)

    resp = client.get("/api/fortune/process", params={"fortuneId": fortune_id}, headers=BOB_AUTH)

    assert resp.status_code == 401
    assert "status" not in resp.json()


def test_unknown_fortune_is_404(client):
    resp = client.get("/api/fortune/process", params={"fortuneId": "missing"}, headers=BOB_AUTH)

    assert resp.status_code == 404
    assert resp.json() == {"error": "Fortune not found"}


def test_predictor_failure_is_500_and_recorded(client, fakes):
    fakes.predictor.error = PredictionError("Failed to generate fortune prediction", details="boom")
    fortune_id = _submit(client)

    resp = client.post("/api/fortune/process", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)

    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to generate fortune prediction"
    status = client.get("/api/fortune/process", params={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    assert status.json() == {"status": "failed"}


def test_client_amount_is_ignored(client, fakes):
    fortune_id = _submit(client)

    resp = client.post("/api/payment", json={"fortuneId": fortune_id, "amount": 1}, headers=ALICE_AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["amount"] == 500
    assert body["clientSecret"] == "pi_1_secret"
    assert fakes.payments.intents[0]["amount"] == 500


def test_price_and_session_lookup(client):
    assert client.get("/api/payment").json() == {"amount": 500, "currency": "usd"}
    assert client.get("/api/payment", params={"session_id": "cs_1"}).status_code == 401
    resp = client.get("/api/payment", params={"session_id": "cs_1"}, headers=ALICE_AUTH)
    assert resp.json() == {"status": "complete"}


def test_webhook_signature_is_checked(client, fakes):
    fortune_id = _submit(client)
    payment_id = client.post("/api/payment", json={"fortuneId": fortune_id}, headers=ALICE_AUTH).json()["paymentId"]
    fakes.payments.events["t=1,v1=abc"] = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}

    bad = client.post("/api/payment/webhook", content=b"{}", headers={"stripe-signature": "forged"})
    assert bad.status_code == 400

    ok = client.post("/api/payment/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"})
    assert ok.json() == {"received": True, "handled": True}
    assert fakes.records.get_payment(payment_id).status == "succeeded"


def test_email_flow(client, fakes):
    fortune_id = _submit(client)

    assert client.post("/api/email", json={"fortuneId": fortune_id}).status_code == 401
    not_ready = client.post("/api/email", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    assert not_ready.status_code == 400
    assert not_ready.json()["error"] == "Fortune prediction not available yet"

    client.post("/api/fortune/process", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    sent = client.post("/api/email", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)
    assert sent.status_code == 200
    assert sent.json()["emailId"] == "email_1"


def test_list_fortunes(client):
    _submit(client)

    assert client.get("/api/fortunes").status_code == 401
    listing = client.get("/api/fortunes", headers=ALICE_AUTH).json()["fortunes"]
    assert len(listing) == 1
    assert listing[0]["name"] == "Sara"


def test_pay_then_create_routes(make_orchestrator, fakes):
    client = TestClient(create_app(make_orchestrator(policy=SubmissionPolicy.PAY_THEN_CREATE), fakes.identity))

    assert client.post("/api/fortune", json=FORTUNE_BODY, headers=ALICE_AUTH).status_code == 400
    created = client.post("/api/fortune/create-pending", json=FORTUNE_BODY, headers=ALICE_AUTH).json()
    assert "stagedUntil" in created
    fortune_id = created["fortuneId"]
    client.post("/api/payment", json={"fortuneId": fortune_id}, headers=ALICE_AUTH)

    resp = client.post(
        "/api/fortune/process-paid",
        json={"fortuneId": fortune_id, "paymentIntentId": "pi_1"},
        headers=ALICE_AUTH,
    )

    assert resp.status_code == 200
    assert resp.json()["prediction"] == "Good things ahead"


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text
