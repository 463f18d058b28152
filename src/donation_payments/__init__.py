"""Donation payment reconciliation service."""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .exceptions import (
    DonationError,
    InvalidDonationRequest,
    TenantInactive,
    TenantSuspended,
    ResourceNotFound,
    DonationAlreadyProcessed,
    IdempotencyConflict,
    PaymentProviderError,
    ProviderResourceMissing,
    WebhookVerificationError,
    WebhookProcessingError,
)
from .fees import FeeSchedule, FeeBreakdown, calculate_fees

__all__ = [
    "Settings",
    "get_settings",
    "DonationError",
    "InvalidDonationRequest",
    "TenantInactive",
    "TenantSuspended",
    "ResourceNotFound",
    "DonationAlreadyProcessed",
    "IdempotencyConflict",
    "PaymentProviderError",
    "ProviderResourceMissing",
    "WebhookVerificationError",
    "WebhookProcessingError",
    "FeeSchedule",
    "FeeBreakdown",
    "calculate_fees",
]
