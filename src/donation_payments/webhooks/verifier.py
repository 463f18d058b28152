"""Authentication of inbound payment provider webhooks."""

import json
import logging
from typing import Optional, Sequence, Union

import stripe
from pydantic import ValidationError

from ..connectors.base import WebhookEvent
from ..exceptions import WebhookVerificationError

logger = logging.getLogger(__name__)

# Maximum age of a signed payload in seconds
DEFAULT_TOLERANCE = 300


class WebhookVerifier:
    """Verify Stripe-Signature headers against one or more signing secrets.

    Platform events and Connect events are signed with different secrets,
    so each configured secret is tried in order until one matches. Callers
    only ever see a generic failure message.

    Args:
        secrets: Signing secrets in the order they are tried. Empty values
            are ignored.
        tolerance: Maximum age of the signature timestamp in seconds.
    """

    def __init__(self, secrets: Sequence[str], tolerance: int = DEFAULT_TOLERANCE):
        self.secrets = [secret for secret in secrets if secret]
        self.tolerance = tolerance
        if not self.secrets:
            logger.warning("WebhookVerifier has no signing secrets; every delivery will be rejected")

    def verify(self, payload: Union[bytes, str], signature_header: Optional[str]) -> WebhookEvent:
        """Authenticate a delivery and parse it into an event.

        Args:
            payload: Raw request body, exactly as received.
            signature_header: Value of the stripe-signature header.

        Returns:
            The verified WebhookEvent.

        Raises:
            WebhookVerificationError: Empty body, missing header, no secret
                matched, or the signed body is not an event.
        """
        if not payload:
            raise WebhookVerificationError("Empty request body.")
        if not signature_header:
            raise WebhookVerificationError("No stripe-signature header.")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            logger.debug(f"Webhook body is not valid UTF-8: {e}")
            raise WebhookVerificationError() from e

        last_error: Optional[Exception] = None
        for index, secret in enumerate(self.secrets):
            try:
                stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance=self.tolerance)
            except stripe.SignatureVerificationError as e:
                logger.debug(f"Signature check with secret #{index + 1} failed: {e}")
                last_error = e
                continue
            return self._parse(body)

        logger.warning("Webhook signature verification failed for all configured secrets")
        raise WebhookVerificationError() from last_error

    @staticmethod
    def _parse(body: str) -> WebhookEvent:
        try:
            return WebhookEvent.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            logger.debug(f"Signed payload is not a valid event: {e}")
            raise WebhookVerificationError() from e
