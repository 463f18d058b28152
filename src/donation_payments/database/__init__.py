"""Persistence layer: models, repositories and session handling."""

from .models import (
    Base,
    Church,
    StripeConnectAccount,
    DonationType,
    Donor,
    DonationTransaction,
    DonationStatus,
    SubscriptionStatus,
    TransactionAction,
    TransactionHistory,
    ProcessedWebhookEvent,
    PayoutSummary,
    ALLOWED_TRANSITIONS,
    utcnow,
)
from .repository import (
    ChurchRepository,
    DonationTypeRepository,
    DonorRepository,
    DonationTransactionRepository,
    WebhookEventRepository,
    TransactionHistoryRepository,
    PayoutSummaryRepository,
)
from .session import (
    create_async_engine,
    get_async_session_factory,
    init_db,
    close_db,
    get_db,
)

__all__ = [
    "Base",
    "Church",
    "StripeConnectAccount",
    "DonationType",
    "Donor",
    "DonationTransaction",
    "DonationStatus",
    "SubscriptionStatus",
    "TransactionAction",
    "TransactionHistory",
    "ProcessedWebhookEvent",
    "PayoutSummary",
    "ALLOWED_TRANSITIONS",
    "utcnow",
    "ChurchRepository",
    "DonationTypeRepository",
    "DonorRepository",
    "DonationTransactionRepository",
    "WebhookEventRepository",
    "TransactionHistoryRepository",
    "PayoutSummaryRepository",
    "create_async_engine",
    "get_async_session_factory",
    "init_db",
    "close_db",
    "get_db",
]
