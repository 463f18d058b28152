"""Shared test fixtures and configuration."""

import hmac
import os
import time
import uuid
import hashlib
from types import SimpleNamespace
from typing import Dict, Any, Optional

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_platform_secret")
os.environ.setdefault("STRIPE_CONNECT_WEBHOOK_SECRET", "whsec_test_connect_secret")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_GATEWAY", "simulator")
os.environ.setdefault("INITIATE_RATE_LIMIT", "1000/minute")

PLATFORM_SECRET = "whsec_test_platform_secret"
CONNECT_SECRET = "whsec_test_connect_secret"
CONNECTED_ACCOUNT_ID = "acct_test_grace_chapel"
API_KEY = "test_api_key_12345"


@pytest.fixture
def settings():
    """Settings used by services under test."""
    from donation_payments.config import Settings

    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        api_key=API_KEY,
        payment_gateway="simulator",
        stripe_webhook_secret=PLATFORM_SECRET,
        stripe_connect_webhook_secret=CONNECT_SECRET,
        donation_payment_method_types=["card", "us_bank_account", "customer_balance"],
    )


@pytest.fixture
def simulator():
    """Simulator connector with the test church's connected account."""
    from donation_payments.connectors import SimulatorConnector

    connector = SimulatorConnector()
    connector.add_account(CONNECTED_ACCOUNT_ID)
    return connector


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from donation_payments.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from donation_payments.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(db_session):
    """An onboarded church with a connected account and an active fund.

    Only plain ids are exposed so tests never touch expired ORM state.
    """
    from donation_payments.database import Church, StripeConnectAccount, DonationType, Donor

    church = Church(name="Grace Chapel", slug="grace-chapel", onboarding_completed=True)
    db_session.add(church)
    await db_session.flush()

    db_session.add(StripeConnectAccount(
        church_id=church.id,
        stripe_account_id=CONNECTED_ACCOUNT_ID,
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
    ))
    tithe = DonationType(church_id=church.id, name="Tithe")
    building = DonationType(church_id=church.id, name="Building Fund", is_active=False)
    donor = Donor(church_id=church.id, first_name="Ruth", email="ruth@example.org")
    db_session.add_all([tithe, building, donor])
    await db_session.commit()

    return SimpleNamespace(
        church_id=church.id,
        donation_type_id=tithe.id,
        inactive_donation_type_id=building.id,
        donor_id=donor.id,
        stripe_account_id=CONNECTED_ACCOUNT_ID,
    )


@pytest.fixture
def initiate_body(seeded) -> Dict[str, Any]:
    """Return a valid initiation body for the seeded church."""
    return {
        "idempotencyKey": str(uuid.uuid4()),
        "churchId": seeded.church_id,
        "donationTypeId": seeded.donation_type_id,
        "baseAmount": 10000,
        "currency": "USD",
        "firstName": "Naomi",
        "lastName": "Boaz",
        "donorEmail": "  Naomi@Example.org ",
        "coverFees": False,
        "isAnonymous": False,
    }


# Webhook helpers
def sign_payload(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a stripe-signature header exactly as the provider does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(
    event_type: str,
    obj: Dict[str, Any],
    event_id: Optional[str] = None,
    account: Optional[str] = CONNECTED_ACCOUNT_ID,
) -> Dict[str, Any]:
    event = {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }
    if account:
        event["account"] = account
    return event


@pytest.fixture
async def pending_transaction(db_session, seeded):
    """A pending donation with a known payment intent id."""
    from donation_payments.database import DonationTransaction

    transaction = DonationTransaction(
        church_id=seeded.church_id,
        donor_id=seeded.donor_id,
        donation_type_id=seeded.donation_type_id,
        amount=10000,
        charged_amount=10438,
        currency="usd",
        stripe_payment_intent_id="pi_test_pending_001",
        idempotency_key=str(uuid.uuid4()),
        processing_fee_covered_by_donor=333,
        platform_fee=105,
    )
    db_session.add(transaction)
    await db_session.commit()
    return SimpleNamespace(id=transaction.id, payment_intent_id="pi_test_pending_001")


# API fixtures
@pytest.fixture
async def client(db_engine, simulator, settings):
    """ASGI client with database, gateway and settings overridden."""
    from httpx import AsyncClient, ASGITransport
    from donation_payments.api import app
    from donation_payments.auth import get_gateway
    from donation_payments.config import get_settings
    from donation_payments.database import get_db, get_async_session_factory

    session_factory = get_async_session_factory(db_engine)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: simulator
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {API_KEY}"}
