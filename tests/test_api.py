"""Tests for API endpoints."""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from payment_links.api import app, get_service
from payment_links.auth import limiter
from payment_links.database import get_db
from payment_links.services import PaymentLinkService


@pytest.fixture
def client(simulator, sms_sender, email_sender):
    """Create a test client wired to the simulator and mock senders.

    Entering the client runs the lifespan, which creates the in-memory
    database on the client's event loop.
    """

    async def override_service(db: AsyncSession = Depends(get_db)):
        service = PaymentLinkService(
            db,
            provider_factory=lambda name: simulator,
            sms_sender=sms_sender,
            email_sender=email_sender,
        )
        try:
            yield service
        finally:
            await service.close()

    app.dependency_overrides[get_service] = override_service
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_link(client, auth_headers, body):
    response = client.post("/payment-links", json=body, headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestCreatePaymentLinkEndpoint:
    """Tests for POST /payment-links."""

    def test_create_success(self, client, auth_headers, valid_link_request):
        response = client.post("/payment-links", json=valid_link_request, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["status"] == "created"
        assert data["provider"] == "simulator"
        assert data["checkoutUrl"].startswith("https://pay.simulator.local/checkout/sim_link_")
        assert data["amount"] == 487.5
        assert data["smsNotification"]["sent"] is True
        assert data["smsNotification"]["messageSid"] == "SM1234567890"
        assert data["emailNotification"]["sent"] is True
        assert data["emailNotification"]["messageId"] == "ses-0001"

    def test_missing_customer(self, client, auth_headers, valid_link_request, sms_sender):
        del valid_link_request["customer"]
        response = client.post("/payment-links", json=valid_link_request, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "customer" in body["error"]["message"]
        sms_sender.send.assert_not_awaited()

    def test_invalid_currency(self, client, auth_headers, valid_link_request):
        valid_link_request["currency"] = "EUR"
        response = client.post("/payment-links", json=valid_link_request, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Currency must be USD or CAD"

    def test_invalid_json(self, client, auth_headers):
        response = client.post(
            "/payment-links",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid JSON in request body"

    def test_sms_disabled(self, client, auth_headers, valid_link_request):
        valid_link_request["sendSMS"] = False
        data = create_link(client, auth_headers, valid_link_request)

        assert data["smsNotification"]["sent"] is False
        assert data["smsNotification"]["reason"] == "SMS disabled"


class TestAuthentication:
    """Tests for bearer API key checks."""

    def test_missing_api_key(self, client, valid_link_request):
        response = client.post("/payment-links", json=valid_link_request)

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_wrong_api_key(self, client, valid_link_request):
        response = client.post(
            "/payment-links",
            json=valid_link_request,
            headers={"Authorization": "Bearer wrong_key"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid API key"

    def test_unconfigured_api_key(self, client, auth_headers, valid_link_request, monkeypatch):
        monkeypatch.delenv("API_KEY")
        response = client.post("/payment-links", json=valid_link_request, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Service configuration error"

    def test_status_requires_api_key(self, client):
        response = client.get("/payment-links/anything")
        assert response.status_code == 401


class TestGetPaymentStatusEndpoint:
    """Tests for GET /payment-links/{link_id}."""

    def test_status_after_create(self, client, auth_headers, valid_link_request):
        created = create_link(client, auth_headers, valid_link_request)

        response = client.get(f"/payment-links/{created['id']}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == created["id"]
        assert data["status"] == "created"
        assert data["formattedAmount"] == "$487.50"
        assert data["statusInfo"]["label"] == "Created"
        assert data["customer"] == {"name": "Sarah Johnson", "email": "sarah.johnson@email.com"}
        assert [event["eventType"] for event in data["eventHistory"]] == ["created"]
        assert data["lastSyncAt"] is None
        assert data["mxMerchantStatus"]["status"] == "created"

    def test_provider_outage_returns_stored_status(self, client, auth_headers, valid_link_request, simulator):
        created = create_link(client, auth_headers, valid_link_request)
        simulator.fail_status_reads = True

        response = client.get(f"/payment-links/{created['id']}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "created"
        assert data["mxMerchantStatus"] is None

    def test_completed_fields(self, client, auth_headers, valid_link_request, simulator):
        created = create_link(client, auth_headers, valid_link_request)
        simulator.set_status(created["providerLinkRef"], "paid", transaction_id="txn_9")

        data = client.get(f"/payment-links/{created['id']}", headers=auth_headers).json()["data"]

        assert data["status"] == "completed"
        assert data["transactionId"] == "txn_9"
        assert "completedAt" in data
        assert data["lastSyncAt"] is not None

    def test_not_found(self, client, auth_headers):
        response = client.get("/payment-links/does-not-exist", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Payment link not found"


class TestWebhookEndpoint:
    """Tests for POST /webhook."""

    def test_completed_webhook(self, client, auth_headers, valid_link_request, simulator, sms_sender):
        created = create_link(client, auth_headers, valid_link_request)
        sms_sender.send.reset_mock()
        payload = simulator.build_webhook(
            created["providerLinkRef"], "payment.completed", transactionId="txn_42", paidAmount=487.5,
        )

        response = client.post("/webhook", json=payload, headers={"X-Provider": "simulator"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == created["id"]
        assert data["previousStatus"] == "created"
        assert data["status"] == "completed"
        assert data["transactionId"] == "txn_42"
        assert data["smsNotification"]["sent"] is True
        assert sms_sender.send.call_args.args[1] == "payment_confirmation"

    def test_unknown_reference(self, client):
        response = client.post("/webhook", json={"eventType": "invoice.paid", "paymentLinkId": "link_nope"})

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_missing_reference(self, client):
        response = client.post("/webhook", json={"eventType": "invoice.paid"})
        assert response.status_code == 400

    def test_invalid_json(self, client):
        response = client.post(
            "/webhook", content=b"not-json", headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid JSON in webhook payload"

    @pytest.mark.parametrize("extra", [
        {"paidAmount": "abc"},
        {"timestamp": "not-a-date"},
        {"eventType": 7},
        {"metadata": "reason"},
    ])
    def test_malformed_fields_rejected_before_lookup(
        self, client, auth_headers, valid_link_request, extra,
    ):
        created = create_link(client, auth_headers, valid_link_request)
        payload = {"eventType": "payment.completed", "paymentLinkId": created["providerLinkRef"], **extra}

        response = client.post("/webhook", json=payload)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid webhook payload"
        data = client.get(f"/payment-links/{created['id']}", headers=auth_headers).json()["data"]
        assert data["status"] == "created"
        assert len(data["eventHistory"]) == 1


class TestHealthEndpoint:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "provider": "simulator"}
