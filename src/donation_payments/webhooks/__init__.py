"""Inbound webhook verification and processing."""

from .verifier import WebhookVerifier
from .processor import WebhookProcessor, WebhookOutcome

__all__ = ["WebhookVerifier", "WebhookProcessor", "WebhookOutcome"]
