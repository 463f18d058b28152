"""Tests for the SimulatorConnector."""

import pytest

from donation_payments.connectors import (
    BalanceTransaction,
    CustomerDetails,
    PaymentIntentParams,
    SimulatorConnector,
    SimulatorConfig,
)
from donation_payments.exceptions import PaymentProviderError, ProviderResourceMissing

ACCOUNT = "acct_sim_church"


def _params(amount=1000):
    return PaymentIntentParams(amount=amount, currency="usd", payment_method_types=["card"], application_fee_amount=10)


@pytest.fixture
def connector():
    connector = SimulatorConnector()
    connector.add_account(ACCOUNT)
    return connector


class TestSimulatorAccounts:
    """Test connected account handling."""

    async def test_retrieve_seeded_account(self, connector):
        """Test that a seeded account is returned."""
        account = await connector.retrieve_account(ACCOUNT)

        assert account.charges_enabled is True
        assert connector.calls == ["retrieve_account"]

    async def test_unknown_account(self, connector):
        """Test that an unknown account is a provider error."""
        with pytest.raises(PaymentProviderError, match="account retrieval"):
            await connector.retrieve_account("acct_unknown")

    async def test_charges_disabled_account(self):
        """Test seeding an account that cannot take charges."""
        connector = SimulatorConnector()
        connector.add_account(ACCOUNT, charges_enabled=False)

        assert (await connector.retrieve_account(ACCOUNT)).charges_enabled is False


class TestSimulatorCustomers:
    """Test customer bookkeeping."""

    async def test_create_and_find(self, connector):
        """Test that a created customer is found by email on its account only."""
        customer_id = await connector.create_customer(CustomerDetails(email="ruth@example.org"), ACCOUNT)

        assert await connector.find_customer_by_email("ruth@example.org", ACCOUNT) == customer_id
        assert await connector.find_customer_by_email("ruth@example.org", "acct_other") is None

    async def test_update_merges_details(self, connector):
        """Test that an update keeps fields it does not mention."""
        customer_id = await connector.create_customer(CustomerDetails(email="ruth@example.org", name="Ruth"), ACCOUNT)

        await connector.update_customer(customer_id, CustomerDetails(phone="+15550001111"), ACCOUNT)

        details = connector.customers[customer_id].details
        assert details.name == "Ruth"
        assert details.phone == "+15550001111"

    async def test_customer_failure_switch(self):
        """Test that customer calls can be made to fail."""
        connector = SimulatorConnector(SimulatorConfig(fail_customer_calls=True))

        with pytest.raises(PaymentProviderError, match="customer lookup"):
            await connector.find_customer_by_email("ruth@example.org", ACCOUNT)


class TestSimulatorPaymentIntents:
    """Test payment intent simulation."""

    async def test_create_intent(self, connector):
        """Test that a new intent awaits a payment method."""
        result = await connector.create_payment_intent(_params(), ACCOUNT)

        assert result.id.startswith("pi_sim_")
        assert result.client_secret.startswith(f"{result.id}_secret_")
        assert result.status == "requires_payment_method"

    async def test_same_idempotency_key_same_intent(self, connector):
        """Test that a repeated idempotency key returns the original intent."""
        first = await connector.create_payment_intent(_params(), ACCOUNT, idempotency_key="key-1")
        second = await connector.create_payment_intent(_params(2000), ACCOUNT, idempotency_key="key-1")

        assert second.id == first.id
        assert second.amount == 1000
        assert len(connector.intents) == 1

    async def test_set_status_and_retrieve(self, connector):
        """Test that a seeded status is visible on retrieval."""
        intent = await connector.create_payment_intent(_params(), ACCOUNT)
        connector.set_intent_status(intent.id, "succeeded")

        assert (await connector.retrieve_payment_intent(intent.id, ACCOUNT)).status == "succeeded"

    async def test_retrieve_from_other_account(self, connector):
        """Test that an intent is only visible on its own account."""
        intent = await connector.create_payment_intent(_params(), ACCOUNT)

        with pytest.raises(ProviderResourceMissing):
            await connector.retrieve_payment_intent(intent.id, "acct_other")

    async def test_creation_failure_switch(self):
        """Test that intent creation can be made to fail."""
        connector = SimulatorConnector(SimulatorConfig(fail_intent_creation=True))

        with pytest.raises(PaymentProviderError, match="payment intent creation"):
            await connector.create_payment_intent(_params(), ACCOUNT)
        assert connector.intents == {}


class TestSimulatorLookups:
    """Test payment method and payout lookups."""

    async def test_payment_method_type(self, connector):
        """Test that a seeded payment method reports its type."""
        pm_id = connector.add_payment_method("us_bank_account")

        assert await connector.retrieve_payment_method_type(pm_id, ACCOUNT) == "us_bank_account"

    async def test_unknown_payment_method_lookup(self, connector):
        """Test that the lookup wrapper reports an unknown method."""
        lookup = await connector.lookup_payment_method_type("pm_unknown", ACCOUNT)

        assert lookup.ok is False
        assert lookup.error == "Payment provider error during payment method retrieval."

    async def test_lookup_without_account(self, connector):
        """Test that a lookup without an account never calls the provider."""
        lookup = await connector.lookup_payment_method_type("pm_1", None)

        assert lookup.ok is False
        assert connector.calls == []

    async def test_payout_transactions(self, connector):
        """Test that seeded payout transactions are returned and unknown payouts are empty."""
        connector.add_payout("po_1", [BalanceTransaction(id="txn_1", type="charge", amount=1000, fee=59, net=941)])

        assert [bt.id for bt in await connector.list_payout_balance_transactions("po_1", ACCOUNT)] == ["txn_1"]
        assert await connector.list_payout_balance_transactions("po_2", ACCOUNT) == []

    def test_health_check(self, connector):
        """Test the simulator health check."""
        assert connector.health_check() == {"ok": True, "connector": "simulator"}
