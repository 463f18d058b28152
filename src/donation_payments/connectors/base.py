import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Generic, TypeVar

from pydantic import BaseModel, Field

from ..exceptions import PaymentProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Canonical models
class ConnectedAccount(BaseModel):
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False


class Address(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class CustomerDetails(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentIntentParams(BaseModel):
    amount: int  # minor units, already grossed up
    currency: str
    payment_method_types: List[str]
    application_fee_amount: int
    customer: Optional[str] = None
    receipt_email: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentIntentResult(BaseModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    amount: int
    currency: str
    payment_method_types: List[str] = Field(default_factory=list)


class BalanceTransaction(BaseModel):
    id: str
    type: str
    amount: int
    fee: int = 0
    net: int = 0
    reporting_category: Optional[str] = None


class WebhookEvent(BaseModel):
    """A verified provider event, reduced to what the processor reads."""
    id: str
    type: str
    account: Optional[str] = None  # connected account the event originated on
    created: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> Dict[str, Any]:
        return self.data.get("object") or {}


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """Outcome of a provider lookup whose failure the caller tolerates."""
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default


class ConnectorBase(ABC):
    """
    Payment provider interface. Every call except retrieve_account acts on
    the church's connected account, passed as ``stripe_account``.
    Implementations raise PaymentProviderError for provider failures.
    """

    name = "base"

    @abstractmethod
    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        raise NotImplementedError

    @abstractmethod
    async def find_customer_by_email(self, email: str, stripe_account: str) -> Optional[str]:
        """
        Return the id of the first customer with this email, or None.
        """
        raise NotImplementedError

    @abstractmethod
    async def create_customer(self, details: CustomerDetails, stripe_account: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def update_customer(self, customer_id: str, details: CustomerDetails, stripe_account: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_payment_intent(
        self,
        params: PaymentIntentParams,
        stripe_account: str,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        """
        Create an intent. The same idempotency key yields the same intent.
        """
        raise NotImplementedError

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str, stripe_account: str) -> PaymentIntentResult:
        raise NotImplementedError

    @abstractmethod
    async def retrieve_payment_method_type(self, payment_method_id: str, stripe_account: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def list_payout_balance_transactions(
        self,
        payout_id: str,
        stripe_account: str,
    ) -> List[BalanceTransaction]:
        """
        Return every balance transaction settled by a payout, across all pages.
        """
        raise NotImplementedError

    async def lookup_payment_method_type(
        self,
        payment_method_id: Optional[str],
        stripe_account: Optional[str],
    ) -> LookupResult[str]:
        if not payment_method_id or not stripe_account:
            return LookupResult(error="missing payment method or account")
        try:
            return LookupResult(value=await self.retrieve_payment_method_type(payment_method_id, stripe_account))
        except PaymentProviderError as e:
            logger.warning(f"Payment method lookup failed for {payment_method_id}: {e.message}")
            return LookupResult(error=e.message)

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "connector": self.name}
