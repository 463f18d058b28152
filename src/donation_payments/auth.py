"""Authentication, rate limiting and shared request dependencies."""

import secrets
import logging
from datetime import datetime
from functools import lru_cache
from typing import Callable

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import Settings, get_settings
from .connectors import ConnectorBase, build_connector
from .database import utcnow
from .webhooks import WebhookVerifier

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Rate limiter, keyed by client IP
limiter = Limiter(key_func=get_remote_address)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """Verify the API key from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.
        settings: Service configuration.

    Returns:
        The verified API key.

    Raises:
        HTTPException: If API key is invalid or not configured.
    """
    api_key = credentials.credentials
    if not settings.api_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


@lru_cache()
def get_gateway() -> ConnectorBase:
    """The process wide payment connector selected by PAYMENT_GATEWAY."""
    return build_connector(get_settings())


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_webhook_verifier(settings: Settings = Depends(get_settings)) -> WebhookVerifier:
    return WebhookVerifier(settings.webhook_secrets)
