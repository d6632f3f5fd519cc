import json

import pytest
from fastapi.testclient import TestClient

from conftest import MERCHANT_ACCOUNT, make_merchant
from lumepay.core.security import create_access_token
from lumepay.main import app
from lumepay.services.verification import get_verification_client
from lumepay.services.webhooks import SIGNATURE_HEADER, verify_signature

HOOK_URL = "https://shop.example.com/hooks/lumepay"
KEY = {"x-api-key": "lume_test_key"}


def bearer(merchant):
    return {"Authorization": f"Bearer {create_access_token({'sub': merchant.id})}"}


def create_intent(client, amount=500, **extra):
    response = client.post("/intent/create", json={"amount": amount, "customerEmail": "a@b.com", **extra}, headers=KEY)
    assert response.status_code == 200, response.text
    return response.json()["intent"]


def test_root(client):
    assert client.get("/").json() == {"message": "LumePay API is running"}


# =========================
# MERCHANT ONBOARDING
# =========================
def test_register_login_and_configure_bank(client):
    response = client.post(
        "/auth/register",
        json={"email": "shop@example.com", "password": "s3cret-pass", "name": "Abebe Kebede"},
    )
    assert response.status_code == 200
    assert response.json()["bankAccount"] is None

    response = client.post("/auth/login", json={"email": "shop@example.com", "password": "s3cret-pass"})
    token = response.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    response = client.post("/settings/bank", json={"bankAccount": MERCHANT_ACCOUNT, "bankName": "CBE"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["user"]["bankName"] == "CBE"

    me = client.get("/auth/me", headers=headers).json()
    assert me["email"] == "shop@example.com"
    assert me["bankAccount"] == MERCHANT_ACCOUNT


def test_register_duplicate_email(client, merchant):
    response = client.post("/auth/register", json={"email": merchant.email, "password": "s3cret-pass"})

    assert response.status_code == 400
    assert response.json() == {"error": "Conflict", "message": "Email already registered"}


def test_login_with_wrong_password(client, merchant):
    response = client.post("/auth/login", json={"email": merchant.email, "password": "wrong-password"})

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated"


def test_bank_settings_validation(client, merchant):
    response = client.post("/settings/bank", json={"bankAccount": "12", "bankName": "CBE"}, headers=bearer(merchant))

    assert response.status_code == 400
    assert response.json() == {"error": "InvalidInput", "message": "Invalid bank account number format"}


def test_api_key_lifecycle(client, merchant):
    created = client.post("/keys", json={"name": "Checkout"}, headers=bearer(merchant)).json()["apiKey"]
    assert created["key"].startswith("lume_")
    assert created["remainingCredits"] == 100

    listed = client.get("/keys", headers=bearer(merchant)).json()["apiKeys"]
    assert [k["id"] for k in listed] == [created["id"]]
    assert "key" not in listed[0]

    second = client.post("/keys", json={}, headers=bearer(merchant))
    assert second.status_code == 400
    assert second.json()["error"] == "ApiKeyExists"

    updated = client.patch(f"/keys/{created['id']}", json={"enabled": False}, headers=bearer(merchant)).json()
    assert updated["apiKey"]["enabled"] is False

    response = client.post("/intent/create", json={"amount": 10}, headers={"x-api-key": created["key"]})
    assert response.status_code == 401
    assert response.json()["error"] == "KeyDisabled"

    assert client.delete(f"/keys/{created['id']}", headers=bearer(merchant)).json() == {"success": True}
    assert client.get(f"/keys/{created['id']}", headers=bearer(merchant)).status_code == 404


def test_session_required(client):
    response = client.get("/intents")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthenticated", "message": "Missing token"}


# =========================
# INTENTS + PAYMENTS
# =========================
def test_create_intent(client, api_key):
    intent = create_intent(client, metadata={"order": "42"})

    assert intent["status"] == "pending"
    assert intent["amount"] == 500.0
    assert intent["customerEmail"] == "a@b.com"
    assert intent["metadata"] == {"order": "42"}
    assert intent["expiresAt"] == "2025-01-15T12:30:00"


def test_create_intent_without_key(client):
    response = client.post("/intent/create", json={"amount": 500})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthenticated", "message": "API key is required"}


@pytest.mark.parametrize("body", [{}, {"amount": 0}, {"amount": -1}])
def test_create_intent_invalid_amount(client, api_key, body):
    response = client.post("/intent/create", json=body, headers=KEY)

    assert response.status_code == 400
    assert response.json() == {"error": "InvalidAmount", "message": "Valid amount is required"}


def test_malformed_body_is_invalid_input(client, api_key):
    response = client.post("/intent/create", json={"amount": 100, "customerEmail": "not-an-email"}, headers=KEY)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidInput"
    assert body["details"]["errors"][0]["field"] == "customerEmail"


def test_public_and_merchant_views_of_intent(client, api_key):
    intent = create_intent(client)

    public = client.get(f"/intent/{intent['id']}").json()["intent"]
    full = client.get(f"/intent/{intent['id']}", headers=KEY).json()["intent"]

    assert "merchantId" not in public
    assert "metadata" not in public
    assert full["merchantId"] == intent["merchantId"]
    assert client.get("/intent/missing").status_code == 404


def test_pay_intent_end_to_end(client, dispatcher, api_key, webhook_receiver, merchant, verification_service):
    config = client.post(
        "/webhooks/config",
        json={"url": HOOK_URL, "enabled": True},
        headers=bearer(merchant),
    ).json()["webhookSettings"]
    intent = create_intent(client)

    response = client.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["payment"]["transactionId"] == "TX1"
    assert body["payment"]["amount"] == 500.0
    assert body["verificationDetails"]["receiver"] == MERCHANT_ACCOUNT
    assert verification_service.requests[0]["expected_receiver_account"] == MERCHANT_ACCOUNT

    assert client.get(f"/intent/{intent['id']}").json()["intent"]["status"] == "completed"
    assert client.get(f"/keys/{api_key.id}", headers=bearer(merchant)).json()["apiKey"]["remainingCredits"] == 99

    client.portal.call(dispatcher.join)

    (request,) = webhook_receiver.requests
    assert verify_signature(request.content, request.headers[SIGNATURE_HEADER], config["secret"])
    assert json.loads(request.content)["data"]["transactionId"] == "TX1"

    deliveries = client.get("/webhooks/deliveries", headers=bearer(merchant)).json()["deliveries"]
    assert deliveries[0]["status"] == "success"
    assert deliveries[0]["payment"]["transactionId"] == "TX1"


def test_pay_with_reused_transaction(client, api_key):
    first = create_intent(client)
    second = create_intent(client)
    client.post(f"/intent/{first['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    response = client.post(f"/intent/{second['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 400
    assert response.json()["error"] == "DuplicateTransaction"


def test_pay_without_transaction_id(client, api_key):
    intent = create_intent(client)

    response = client.post(f"/intent/{intent['id']}/pay", json={}, headers=KEY)

    assert response.status_code == 400
    assert response.json() == {"error": "MissingTransactionId", "message": "Transaction ID is required"}


def test_pay_expired_intent(client, api_key, frozen_clock):
    intent = create_intent(client)
    frozen_clock.advance(minutes=31)

    response = client.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 400
    assert response.json()["error"] == "IntentExpired"
    assert client.get(f"/intent/{intent['id']}").json()["intent"]["status"] == "failed"


def test_verification_rejection(client, api_key, verification_service):
    intent = create_intent(client)
    verification_service.status_code = 400
    verification_service.result = {"success": False, "message": "Amount mismatch"}

    response = client.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 400
    assert response.json() == {"error": "VerificationFailed", "message": "Amount mismatch"}


def test_verification_service_down(client, api_key, verification_service):
    intent = create_intent(client)
    verification_service.status_code = 503
    verification_service.result = {"success": False}

    response = client.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 502
    assert response.json()["error"] == "UpstreamFailure"


def test_list_intents(client, api_key, merchant):
    for amount in (100, 200, 300):
        create_intent(client, amount=amount)

    body = client.get("/intents", params={"limit": 2}, headers=bearer(merchant)).json()

    assert len(body["intents"]) == 2
    assert body["pagination"] == {"total": 3, "page": 1, "limit": 2, "totalPages": 2}


def test_unexpected_error_is_internal(client, api_key):
    class BrokenVerifier:
        def verify(self, request):
            raise RuntimeError("boom")

    intent = create_intent(client)
    app.dependency_overrides[get_verification_client] = lambda: BrokenVerifier()
    raw = TestClient(app, raise_server_exceptions=False)

    response = raw.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal", "message": "Something went wrong"}


# =========================
# WEBHOOKS
# =========================
def test_webhook_config_defaults(client, merchant):
    config = client.get("/webhooks/config", headers=bearer(merchant)).json()["webhookSettings"]

    assert config == {
        "enabled": False,
        "url": None,
        "secret": None,
        "subscriptions": ["payment.completed", "payment.failed"],
    }


def test_send_test_webhook(client, merchant, webhook_receiver):
    client.post("/webhooks/config", json={"url": HOOK_URL, "enabled": True}, headers=bearer(merchant))
    webhook_receiver.respond_with(500)

    body = client.post("/webhooks/test", headers=bearer(merchant)).json()

    assert body["message"] == "Test webhook failed"
    assert body["delivery"]["statusCode"] == 500
    assert body["delivery"]["paymentId"] is None


def test_send_test_webhook_unconfigured(client, merchant):
    response = client.post("/webhooks/test", headers=bearer(merchant))

    assert response.status_code == 400
    assert response.json()["error"] == "WebhookNotConfigured"


def test_retry_failed_delivery(client, dispatcher, api_key, merchant, webhook_receiver):
    client.post("/webhooks/config", json={"url": HOOK_URL, "enabled": True}, headers=bearer(merchant))
    dispatcher.retry_delays = ()
    webhook_receiver.respond_with(500)
    intent = create_intent(client)
    client.post(f"/intent/{intent['id']}/pay", json={"transactionId": "TX1"}, headers=KEY)
    client.portal.call(dispatcher.join)

    (failed,) = client.get("/webhooks/deliveries", headers=bearer(merchant)).json()["deliveries"]
    assert failed["status"] == "failed"

    response = client.post(f"/webhooks/deliveries/{failed['id']}/retry", headers=bearer(merchant))
    assert response.json() == {"message": "Webhook retry initiated"}
    client.portal.call(dispatcher.join)

    deliveries = client.get("/webhooks/deliveries", headers=bearer(merchant)).json()["deliveries"]
    assert sorted(d["status"] for d in deliveries) == ["failed", "success"]


# =========================
# WAITLIST
# =========================
def test_waitlist_closes_registration(client, db):
    admin = make_merchant(db, email="admin@example.com", is_admin=True)
    assert client.get("/waitlist/status").json()["enabled"] is False

    response = client.post(
        "/admin/waitlist/config",
        json={"enabled": True, "message": "Private beta"},
        headers=bearer(admin),
    )
    assert response.status_code == 200

    assert client.get("/waitlist/status").json() == {"enabled": True, "message": "Private beta"}
    response = client.post("/auth/register", json={"email": "new@example.com", "password": "s3cret-pass"})
    assert response.status_code == 400
    assert response.json()["error"] == "Conflict"


def test_waitlist_config_is_admin_only(client, merchant):
    response = client.post(
        "/admin/waitlist/config",
        json={"enabled": True, "message": "Private beta"},
        headers=bearer(merchant),
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden", "message": "Admin access required"}


def test_update_name(client, merchant):
    response = client.post("/settings/name", json={"name": "  Abebe Bikila "}, headers=bearer(merchant))
    assert response.json()["user"]["name"] == "Abebe Bikila"

    response = client.post("/settings/name", json={"name": "   "}, headers=bearer(merchant))
    assert response.status_code == 400
    assert response.json() == {"error": "InvalidInput", "message": "Name is required"}
