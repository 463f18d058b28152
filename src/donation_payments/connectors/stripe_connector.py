"""Stripe Connect implementation of the payment provider interface."""

import logging
from typing import Optional, List, Any, Dict

import stripe

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

# Stripe list endpoints return at most 100 objects per page
PAGE_SIZE = 100


class StripeConnector(ConnectorBase):
    """
    Stripe Connect connector. Donations are direct charges, so every object
    other than the account itself is created on and read from the church's
    connected account.
    """

    name = "stripe"

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or ""
        if not self._api_key:
            # connector still exists but every call will fail with an auth error
            logger.warning("StripeConnector created without an API key")

    def _configure_stripe(self) -> None:
        stripe.api_key = self._api_key

    @staticmethod
    def _provider_error(action: str, e: stripe.StripeError) -> PaymentProviderError:
        logger.error(f"Stripe {action} failed: {type(e).__name__} (request {getattr(e, 'request_id', None)})")
        return PaymentProviderError(f"Payment provider error during {action}.")

    @staticmethod
    def _to_intent_result(pi: Any) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=pi.id,
            client_secret=pi.client_secret,
            status=pi.status,
            amount=pi.amount,
            currency=pi.currency,
            payment_method_types=list(pi.payment_method_types or []),
        )

    @staticmethod
    def _customer_fields(details: CustomerDetails) -> Dict[str, Any]:
        fields = details.model_dump(exclude_none=True, exclude={"address"})
        if details.address is not None and not details.address.is_empty():
            fields["address"] = details.address.model_dump(exclude_none=True)
        if not fields.get("metadata"):
            fields.pop("metadata", None)
        return fields

    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        self._configure_stripe()
        try:
            account = await stripe.Account.retrieve_async(account_id)
        except stripe.StripeError as e:
            raise self._provider_error("account retrieval", e) from e
        return ConnectedAccount(
            id=account.id,
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            details_submitted=bool(account.details_submitted),
        )

    async def find_customer_by_email(self, email: str, stripe_account: str) -> Optional[str]:
        self._configure_stripe()
        try:
            customers = await stripe.Customer.list_async(email=email, limit=1, stripe_account=stripe_account)
        except stripe.StripeError as e:
            raise self._provider_error("customer lookup", e) from e
        if customers.data:
            return customers.data[0].id
        return None

    async def create_customer(self, details: CustomerDetails, stripe_account: str) -> str:
        self._configure_stripe()
        try:
            customer = await stripe.Customer.create_async(
                stripe_account=stripe_account,
                **self._customer_fields(details),
            )
        except stripe.StripeError as e:
            raise self._provider_error("customer creation", e) from e
        return customer.id

    async def update_customer(self, customer_id: str, details: CustomerDetails, stripe_account: str) -> None:
        self._configure_stripe()
        try:
            await stripe.Customer.modify_async(
                customer_id,
                stripe_account=stripe_account,
                **self._customer_fields(details),
            )
        except stripe.StripeError as e:
            raise self._provider_error("customer update", e) from e

    async def create_payment_intent(
        self,
        params: PaymentIntentParams,
        stripe_account: str,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        self._configure_stripe()
        try:
            pi = await stripe.PaymentIntent.create_async(
                stripe_account=stripe_account,
                idempotency_key=idempotency_key,
                **params.model_dump(exclude_none=True),
            )
        except stripe.StripeError as e:
            raise self._provider_error("payment intent creation", e) from e
        logger.info(f"Created payment intent {pi.id} on {stripe_account}")
        return self._to_intent_result(pi)

    async def retrieve_payment_intent(self, payment_intent_id: str, stripe_account: str) -> PaymentIntentResult:
        self._configure_stripe()
        try:
            pi = await stripe.PaymentIntent.retrieve_async(payment_intent_id, stripe_account=stripe_account)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                logger.warning(f"Payment intent {payment_intent_id} does not exist on {stripe_account}")
                raise ProviderResourceMissing("Payment intent not found.") from e
            raise self._provider_error("payment intent retrieval", e) from e
        except stripe.StripeError as e:
            raise self._provider_error("payment intent retrieval", e) from e
        return self._to_intent_result(pi)

    async def retrieve_payment_method_type(self, payment_method_id: str, stripe_account: str) -> str:
        self._configure_stripe()
        try:
            pm = await stripe.PaymentMethod.retrieve_async(payment_method_id, stripe_account=stripe_account)
        except stripe.StripeError as e:
            raise self._provider_error("payment method retrieval", e) from e
        return pm.type

    async def list_payout_balance_transactions(
        self,
        payout_id: str,
        stripe_account: str,
    ) -> List[BalanceTransaction]:
        self._configure_stripe()
        transactions: List[BalanceTransaction] = []
        starting_after: Optional[str] = None

        try:
            while True:
                params: Dict[str, Any] = {"payout": payout_id, "limit": PAGE_SIZE}
                if starting_after:
                    params["starting_after"] = starting_after
                page = await stripe.BalanceTransaction.list_async(stripe_account=stripe_account, **params)
                for bt in page.data:
                    transactions.append(
                        BalanceTransaction(
                            id=bt.id,
                            type=bt.type,
                            amount=bt.amount,
                            fee=bt.fee or 0,
                            net=bt.net or 0,
                            reporting_category=getattr(bt, "reporting_category", None),
                        )
                    )
                if not page.has_more or not page.data:
                    break
                starting_after = page.data[-1].id
        except stripe.StripeError as e:
            raise self._provider_error("balance transaction listing", e) from e

        logger.info(f"Fetched {len(transactions)} balance transactions for payout {payout_id}")
        return transactions
