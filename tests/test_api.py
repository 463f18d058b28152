"""Tests for the HTTP API."""

import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import build_event, sign_payload, PLATFORM_SECRET, CONNECT_SECRET
from donation_payments.database import DonationTransaction, DonationTransactionRepository
from donation_payments.webhooks import WebhookProcessor


async def _post_webhook(client, event, secret=PLATFORM_SECRET):
    body = json.dumps(event)
    return await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": sign_payload(body, secret), "content-type": "application/json"},
    )


class TestHealth:
    """Tests for the health endpoints."""

    async def test_health(self, client):
        """Test the service health check reports the active gateway."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "gateway": {"ok": True, "connector": "simulator"}}

    async def test_reconciliation_health(self, client):
        """Test that the reconciliation health check needs no authentication."""
        response = await client.get("/reconciliation/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "reconciliation"}


class TestInitiateEndpoint:
    """Tests for POST /donations/initiate."""

    async def test_created(self, client, initiate_body, seeded):
        """Test that a new donation answers 201 with the client secret."""
        response = await client.post("/donations/initiate", json=initiate_body)

        assert response.status_code == 201
        data = response.json()
        assert set(data) == {"clientSecret", "transactionId", "stripeAccount"}
        assert data["clientSecret"].startswith("pi_sim_")
        assert data["stripeAccount"] == seeded.stripe_account_id

    async def test_retry_returns_same_transaction(self, client, initiate_body, db_session):
        """Test that a retried request returns the same transaction and secret with 200."""
        first = await client.post("/donations/initiate", json=initiate_body)
        second = await client.post("/donations/initiate", json=initiate_body)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["transactionId"] == first.json()["transactionId"]
        assert second.json()["clientSecret"] == first.json()["clientSecret"]
        assert "message" in second.json()

        rows = (await db_session.execute(
            select(DonationTransaction).where(DonationTransaction.idempotency_key == initiate_body["idempotencyKey"])
        )).scalars().all()
        assert len(rows) == 1

    async def test_cover_fees(self, client, initiate_body, simulator):
        """Test that covering fees grosses up the intent amount."""
        response = await client.post("/donations/initiate", json=dict(initiate_body, coverFees=True))

        assert response.status_code == 201
        intent = next(iter(simulator.intents.values()))
        assert intent.params.amount == 10438
        assert intent.params.application_fee_amount == 105

    async def test_unknown_church(self, client, initiate_body):
        """Test that an unknown church answers 404 with an error body."""
        response = await client.post("/donations/initiate", json=dict(initiate_body, churchId=str(uuid.uuid4())))

        assert response.status_code == 404
        assert response.json() == {"error": "Church not found for the provided churchId."}

    async def test_already_processed(self, client, initiate_body, db_session):
        """Test that a completed donation answers 409 with its transaction id."""
        first = await client.post("/donations/initiate", json=initiate_body)
        transaction_id = first.json()["transactionId"]
        transaction = (await db_session.execute(
            select(DonationTransaction).where(DonationTransaction.id == transaction_id)
        )).scalar_one()
        transaction.status = "succeeded"
        await db_session.commit()

        response = await client.post("/donations/initiate", json=initiate_body)

        assert response.status_code == 409
        assert response.json() == {
            "error": "Donation already processed.",
            "message": "This donation has already been successfully completed.",
            "transactionId": transaction_id,
            "clientSecret": None,
        }

    async def test_provider_failure_is_500(self, client, initiate_body, simulator):
        """Test that a provider failure answers 500 without provider details."""
        simulator.config.fail_account_lookup = True

        response = await client.post("/donations/initiate", json=initiate_body)

        assert response.status_code == 500
        assert response.json() == {"error": "Unable to verify church payment account. Please try again later."}


class TestInitiateValidation:
    """Tests for request validation of POST /donations/initiate."""

    @pytest.mark.parametrize("field,value", [
        ("baseAmount", 0),
        ("baseAmount", -100),
        ("baseAmount", 10.5),
        ("baseAmount", "1000"),
        ("baseAmount", 100000000),
        ("idempotencyKey", "not-a-uuid"),
        ("churchId", "church-1"),
        ("donationTypeId", ""),
        ("donorEmail", "not-an-email"),
        ("phone", "555-1234"),
        ("firstName", "x" * 101),
    ])
    async def test_invalid_field(self, client, initiate_body, field, value):
        """Test that an invalid field answers 400 with an issue pointing at it."""
        response = await client.post("/donations/initiate", json=dict(initiate_body, **{field: value}))

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid input."
        assert [field] in [issue["path"] for issue in data["issues"]]

    async def test_missing_required_field(self, client, initiate_body):
        """Test that a missing idempotency key is reported."""
        body = dict(initiate_body)
        del body["idempotencyKey"]

        response = await client.post("/donations/initiate", json=body)

        assert response.status_code == 400
        issue = response.json()["issues"][0]
        assert issue["path"] == ["idempotencyKey"]
        assert issue["type"] == "missing"

    async def test_validation_stores_nothing(self, client, initiate_body, simulator):
        """Test that a rejected request never reaches the provider."""
        await client.post("/donations/initiate", json=dict(initiate_body, baseAmount=0))

        assert simulator.calls == []


class TestRateLimit:
    """Tests for the per-client rate limit on initiation."""

    @pytest.fixture
    def tight_limit(self, monkeypatch):
        from donation_payments.auth import limiter
        from donation_payments.config import get_settings

        monkeypatch.setenv("INITIATE_RATE_LIMIT", "2/minute")
        get_settings.cache_clear()
        limiter.reset()
        yield
        get_settings.cache_clear()
        limiter.reset()

    async def test_limit_exceeded(self, client, initiate_body, tight_limit):
        """Test that requests over the configured limit answer 429."""
        statuses = []
        for _ in range(3):
            body = dict(initiate_body, idempotencyKey=str(uuid.uuid4()))
            statuses.append((await client.post("/donations/initiate", json=body)).status_code)

        assert statuses == [201, 201, 429]


class TestWebhookEndpoint:
    """Tests for POST /webhooks/stripe."""

    async def test_unhandled_event_acknowledged(self, client):
        """Test that a verified event of an unhandled type answers 200."""
        response = await _post_webhook(client, build_event("customer.created", {"id": "cus_1"}))

        assert response.status_code == 200
        assert response.json() == {"received": True}

    async def test_connect_secret_accepted(self, client):
        """Test that events signed with the connect secret are accepted."""
        response = await _post_webhook(client, build_event("customer.created", {"id": "cus_1"}), secret=CONNECT_SECRET)

        assert response.status_code == 200

    async def test_bad_signature(self, client):
        """Test that a signature matching neither secret answers 400 with a generic message."""
        response = await _post_webhook(client, build_event("payment_intent.succeeded", {"id": "pi_1"}), secret="whsec_wrong")

        assert response.status_code == 400
        assert response.json() == {"error": "Signature verification failed."}
        assert "whsec" not in response.text
        assert "Traceback" not in response.text

    async def test_missing_signature_header(self, client):
        """Test that a request without the signature header answers 400."""
        response = await client.post("/webhooks/stripe", content=json.dumps({"id": "evt_1"}))

        assert response.status_code == 400
        assert response.json() == {"error": "No stripe-signature header."}

    async def test_empty_body(self, client):
        """Test that an empty body answers 400."""
        response = await client.post("/webhooks/stripe", content=b"", headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 400
        assert response.json() == {"error": "Empty request body."}

    async def test_non_utf8_body(self, client):
        """Test that a body that is not UTF-8 answers 400 with the generic message."""
        response = await client.post(
            "/webhooks/stripe",
            content=b"\xff\xfe\x00garbage",
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Signature verification failed."}

    async def test_missing_transaction_warning(self, client):
        """Test that a succeeded event for an unknown intent answers 200 with a warning."""
        response = await _post_webhook(client, build_event("payment_intent.succeeded", {"id": "pi_unknown"}))

        assert response.status_code == 200
        assert response.json() == {"received": True, "warning": "Transaction not found"}

    async def test_database_failure_is_500(self, client, pending_transaction):
        """Test that a database failure answers 500 so the provider redelivers."""
        error = OperationalError("SELECT", {}, Exception("connection reset"))
        with patch.object(DonationTransactionRepository, "get_by_payment_intent_id", AsyncMock(side_effect=error)):
            response = await _post_webhook(
                client, build_event("payment_intent.succeeded", {"id": pending_transaction.payment_intent_id})
            )

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to update transaction record."}

    async def test_unexpected_failure_is_500(self, client):
        """Test that an unexpected handler failure answers 500 with a generic message."""
        with patch.object(WebhookProcessor, "process", AsyncMock(side_effect=RuntimeError("secret detail"))):
            response = await _post_webhook(client, build_event("payment_intent.succeeded", {"id": "pi_1"}))

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook handler failed."}
        assert "secret detail" not in response.text


class TestDonationLifecycle:
    """End-to-end flows through initiation and webhooks."""

    async def test_initiate_then_settle_then_redeliver(self, client, initiate_body, simulator, db_session):
        """Test a donation from initiation to settlement, including a duplicate delivery."""
        initiated = await client.post("/donations/initiate", json=dict(initiate_body, coverFees=True))
        transaction_id = initiated.json()["transactionId"]
        intent_id = next(iter(simulator.intents))
        pm_id = simulator.add_payment_method("card")

        event = build_event("payment_intent.succeeded", {
            "id": intent_id,
            "amount": 10438,
            "amount_received": 10438,
            "application_fee_amount": 105,
            "payment_method": pm_id,
            "payment_method_types": ["card", "us_bank_account"],
        })
        first = await _post_webhook(client, event)
        second = await _post_webhook(client, event)

        assert first.json() == {"received": True}
        assert second.json() == {"received": True, "duplicate": True}

        transaction = (await db_session.execute(
            select(DonationTransaction).where(DonationTransaction.id == transaction_id)
        )).scalar_one()
        assert transaction.status == "succeeded"
        assert transaction.payment_method_type == "card"
        assert transaction.charged_amount == 10438
        assert transaction.platform_fee == 105

        retry = await client.post("/donations/initiate", json=dict(initiate_body, coverFees=True))
        assert retry.status_code == 409

    async def test_initiate_then_fail(self, client, initiate_body, simulator, db_session):
        """Test that a failed payment leaves the key unusable for a new attempt."""
        initiated = await client.post("/donations/initiate", json=initiate_body)
        intent_id = next(iter(simulator.intents))

        await _post_webhook(client, build_event("payment_intent.payment_failed", {
            "id": intent_id,
            "last_payment_error": {"message": "Insufficient funds."},
        }))
        retry = await client.post("/donations/initiate", json=initiate_body)

        assert retry.status_code == 409
        assert retry.json()["transactionId"] == initiated.json()["transactionId"]
