"""Domain errors raised by the donation services.

Each error carries the HTTP status the API layer answers with, so services
stay free of web framework imports.
"""

from typing import Any, Dict, Optional


class DonationError(Exception):
    """Base class for errors surfaced to the donor-facing API."""

    status_code = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update(self.extra)
        return body


class InvalidDonationRequest(DonationError):
    status_code = 400


class TenantInactive(DonationError):
    """The church cannot receive donations yet."""

    status_code = 400


class TenantSuspended(DonationError):
    status_code = 403


class ResourceNotFound(DonationError):
    status_code = 404


class DonationAlreadyProcessed(DonationError):
    status_code = 409

    def __init__(self, transaction_id: str):
        super().__init__(
            "Donation already processed.",
            extra={
                "message": "This donation has already been successfully completed.",
                "transactionId": transaction_id,
                "clientSecret": None,
            },
        )
        self.transaction_id = transaction_id


class IdempotencyConflict(DonationError):
    status_code = 409


class PaymentProviderError(DonationError):
    """A payment provider call failed."""

    status_code = 500


class ProviderResourceMissing(PaymentProviderError):
    """The provider has no object with the requested id."""


class WebhookVerificationError(Exception):
    """Inbound webhook could not be authenticated.

    The message is always generic; the cause is kept on ``__cause__`` for
    logging only.
    """

    status_code = 400

    def __init__(self, message: str = "Signature verification failed."):
        super().__init__(message)
        self.message = message


class WebhookProcessingError(Exception):
    """A verified webhook could not be applied; the provider should redeliver."""

    status_code = 500

    def __init__(self, message: str = "Failed to update transaction record."):
        super().__init__(message)
        self.message = message
