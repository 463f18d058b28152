"""Payment provider connectors."""

from typing import Optional

from ..config import Settings, get_settings
from .base import (
    ConnectorBase,
    ConnectedAccount,
    Address,
    CustomerDetails,
    PaymentIntentParams,
    PaymentIntentResult,
    BalanceTransaction,
    WebhookEvent,
    LookupResult,
)
from .stripe_connector import StripeConnector
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
)

CONNECTORS = {
    "stripe": StripeConnector,
    "simulator": SimulatorConnector,
}


def build_connector(settings: Optional[Settings] = None) -> ConnectorBase:
    """Instantiate the connector named by PAYMENT_GATEWAY."""
    settings = settings or get_settings()
    if settings.payment_gateway not in CONNECTORS:
        raise ValueError(f"Unknown payment gateway: {settings.payment_gateway}")
    if settings.payment_gateway == "stripe":
        return StripeConnector(api_key=settings.stripe_api_key)
    return SimulatorConnector()


__all__ = [
    "ConnectorBase",
    "ConnectedAccount",
    "Address",
    "CustomerDetails",
    "PaymentIntentParams",
    "PaymentIntentResult",
    "BalanceTransaction",
    "WebhookEvent",
    "LookupResult",
    "StripeConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "CONNECTORS",
    "build_connector",
]
