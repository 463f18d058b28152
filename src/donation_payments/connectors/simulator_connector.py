"""Simulator connector for exercising donation flows without real provider calls."""

import uuid
import logging
from typing import Dict, Optional, List
from dataclasses import dataclass

from ..exceptions import PaymentProviderError, ProviderResourceMissing
from .base import (
    ConnectorBase,
    ConnectedAccount,
    CustomerDetails,
    PaymentIntentParams,
    PaymentIntentResult,
    BalanceTransaction,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulatedCustomer:
    id: str
    account: str
    details: CustomerDetails


@dataclass
class SimulatedIntent:
    id: str
    account: str
    params: PaymentIntentParams
    status: str = "requires_payment_method"
    client_secret: str = ""


@dataclass
class SimulatorConfig:
    """Failure switches for the simulator."""
    fail_account_lookup: bool = False
    fail_customer_calls: bool = False
    fail_intent_creation: bool = False
    fail_payment_method_lookup: bool = False
    fail_balance_listing: bool = False


class SimulatorConnector(ConnectorBase):
    """
    In-memory stand-in for the payment provider.

    Features:
    - Connected accounts, customers and payment intents held in dicts
    - Idempotent intent creation keyed like the real provider
    - Payout balance transactions seeded by tests or local demos
    - Failure injection through SimulatorConfig
    """

    name = "simulator"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self.accounts: Dict[str, ConnectedAccount] = {}
        self.customers: Dict[str, SimulatedCustomer] = {}
        self.intents: Dict[str, SimulatedIntent] = {}
        self.payment_methods: Dict[str, str] = {}
        self.payouts: Dict[str, List[BalanceTransaction]] = {}
        self._idempotency: Dict[str, str] = {}
        self.calls: List[str] = []
        logger.info("SimulatorConnector initialized")

    @staticmethod
    def _generate_id(prefix: str) -> str:
        return f"{prefix}_sim_{uuid.uuid4().hex[:20]}"

    def _fail(self, action: str) -> PaymentProviderError:
        logger.error(f"Simulated {action} failure")
        return PaymentProviderError(f"Payment provider error during {action}.")

    # Seeding helpers

    def add_account(self, account_id: str, charges_enabled: bool = True, payouts_enabled: bool = True) -> ConnectedAccount:
        account = ConnectedAccount(
            id=account_id,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
            details_submitted=True,
        )
        self.accounts[account_id] = account
        return account

    def add_payment_method(self, payment_method_type: str) -> str:
        pm_id = self._generate_id("pm")
        self.payment_methods[pm_id] = payment_method_type
        return pm_id

    def set_intent_status(self, payment_intent_id: str, status: str) -> None:
        self.intents[payment_intent_id].status = status

    def add_payout(self, payout_id: str, transactions: List[BalanceTransaction]) -> None:
        self.payouts[payout_id] = list(transactions)

    # ConnectorBase

    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        self.calls.append("retrieve_account")
        if self.config.fail_account_lookup:
            raise self._fail("account retrieval")
        account = self.accounts.get(account_id)
        if account is None:
            raise self._fail("account retrieval")
        return account

    async def find_customer_by_email(self, email: str, stripe_account: str) -> Optional[str]:
        self.calls.append("find_customer_by_email")
        if self.config.fail_customer_calls:
            raise self._fail("customer lookup")
        for customer in self.customers.values():
            if customer.account == stripe_account and customer.details.email == email:
                return customer.id
        return None

    async def create_customer(self, details: CustomerDetails, stripe_account: str) -> str:
        self.calls.append("create_customer")
        if self.config.fail_customer_calls:
            raise self._fail("customer creation")
        customer = SimulatedCustomer(id=self._generate_id("cus"), account=stripe_account, details=details)
        self.customers[customer.id] = customer
        return customer.id

    async def update_customer(self, customer_id: str, details: CustomerDetails, stripe_account: str) -> None:
        self.calls.append("update_customer")
        if self.config.fail_customer_calls:
            raise self._fail("customer update")
        customer = self.customers.get(customer_id)
        if customer is None or customer.account != stripe_account:
            raise self._fail("customer update")
        merged = customer.details.model_dump()
        merged.update(details.model_dump(exclude_none=True))
        customer.details = CustomerDetails(**merged)

    async def create_payment_intent(
        self,
        params: PaymentIntentParams,
        stripe_account: str,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        self.calls.append("create_payment_intent")
        if self.config.fail_intent_creation:
            raise self._fail("payment intent creation")

        if idempotency_key and idempotency_key in self._idempotency:
            return self._to_result(self.intents[self._idempotency[idempotency_key]])

        intent_id = self._generate_id("pi")
        intent = SimulatedIntent(
            id=intent_id,
            account=stripe_account,
            params=params,
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:12]}",
        )
        self.intents[intent_id] = intent
        if idempotency_key:
            self._idempotency[idempotency_key] = intent_id
        return self._to_result(intent)

    async def retrieve_payment_intent(self, payment_intent_id: str, stripe_account: str) -> PaymentIntentResult:
        self.calls.append("retrieve_payment_intent")
        intent = self.intents.get(payment_intent_id)
        if intent is None or intent.account != stripe_account:
            raise ProviderResourceMissing("Payment intent not found.")
        return self._to_result(intent)

    async def retrieve_payment_method_type(self, payment_method_id: str, stripe_account: str) -> str:
        self.calls.append("retrieve_payment_method_type")
        if self.config.fail_payment_method_lookup or payment_method_id not in self.payment_methods:
            raise self._fail("payment method retrieval")
        return self.payment_methods[payment_method_id]

    async def list_payout_balance_transactions(
        self,
        payout_id: str,
        stripe_account: str,
    ) -> List[BalanceTransaction]:
        self.calls.append("list_payout_balance_transactions")
        if self.config.fail_balance_listing:
            raise self._fail("balance transaction listing")
        return list(self.payouts.get(payout_id, []))

    @staticmethod
    def _to_result(intent: SimulatedIntent) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
            amount=intent.params.amount,
            currency=intent.params.currency,
            payment_method_types=list(intent.params.payment_method_types),
        )
