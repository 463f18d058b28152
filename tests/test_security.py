"""Tests for authentication, rate limiting and webhook secret handling."""

from unittest.mock import patch

from slowapi.errors import RateLimitExceeded

from donation_payments.api import app
from donation_payments.auth import limiter, get_webhook_verifier
from donation_payments.config import Settings, get_settings


class TestAPIKeyAuthentication:
    """Tests for API key authentication on operator endpoints."""

    async def test_valid_api_key_accepts_request(self, client, auth_headers):
        """Test that a valid API key allows the request."""
        response = await client.post("/reconciliation/webhook-markers/purge", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"deleted": 0}

    async def test_invalid_api_key_rejects_request(self, client):
        """Test that an invalid API key is rejected."""
        response = await client.post(
            "/reconciliation/webhook-markers/purge",
            headers={"Authorization": "Bearer invalid_key_12345"},
        )

        assert response.status_code == 401
        assert "Invalid API key" in response.json()["detail"]

    async def test_missing_authorization_header(self, client):
        """Test a request without an authorization header."""
        response = await client.post("/reconciliation/webhook-markers/purge")

        assert response.status_code in (401, 403)

    async def test_api_key_not_configured_returns_500(self, client):
        """Test that an unset API_KEY answers 500 rather than accepting anything."""
        app.dependency_overrides[get_settings] = lambda: Settings(api_key="")

        response = await client.post(
            "/reconciliation/webhook-markers/purge",
            headers={"Authorization": "Bearer some_key"},
        )

        assert response.status_code == 500
        assert "configuration error" in response.json()["detail"].lower()

    async def test_timing_safe_comparison(self, client, auth_headers):
        """Test that the key is compared with a timing-safe function."""
        with patch("donation_payments.auth.secrets.compare_digest", return_value=True) as mock_compare:
            await client.post("/reconciliation/webhook-markers/purge", headers=auth_headers)

        mock_compare.assert_called_once_with("test_api_key_12345", "test_api_key_12345")

    async def test_donor_endpoints_need_no_api_key(self, client, initiate_body):
        """Test that donation initiation is public."""
        response = await client.post("/donations/initiate", json=initiate_body)

        assert response.status_code == 201


class TestRateLimitingConfiguration:
    """Tests for the rate limiter wiring."""

    def test_rate_limiter_is_configured(self):
        """Test that the limiter is attached to the application."""
        assert app.state.limiter is limiter

    def test_rate_limit_handler_exists(self):
        """Test that exceeding a limit has a registered handler."""
        assert RateLimitExceeded in app.exception_handlers

    def test_limit_is_configurable(self, monkeypatch):
        """Test that the initiation limit is read from the environment."""
        monkeypatch.setenv("INITIATE_RATE_LIMIT", "5/second")

        assert Settings.from_env().initiate_rate_limit == "5/second"


class TestWebhookSecrets:
    """Tests for webhook signing secret configuration."""

    def test_secrets_in_order(self):
        """Test that the platform secret is tried before the connect secret."""
        settings = Settings(stripe_webhook_secret="whsec_platform", stripe_connect_webhook_secret="whsec_connect")

        assert settings.webhook_secrets == ["whsec_platform", "whsec_connect"]

    def test_unset_secrets_skipped(self):
        """Test that unset secrets are not tried."""
        settings = Settings(stripe_webhook_secret="", stripe_connect_webhook_secret="whsec_connect")

        assert settings.webhook_secrets == ["whsec_connect"]

    def test_verifier_built_from_settings(self):
        """Test that the verifier dependency uses the configured secrets."""
        settings = Settings(stripe_webhook_secret="whsec_a", stripe_connect_webhook_secret="whsec_b")

        assert get_webhook_verifier(settings).secrets == ["whsec_a", "whsec_b"]

    def test_method_types_from_env(self, monkeypatch):
        """Test that the payment method list is read as comma separated values."""
        monkeypatch.setenv("DONATION_PAYMENT_METHOD_TYPES", "card, us_bank_account ,link")

        assert Settings.from_env().donation_payment_method_types == ["card", "us_bank_account", "link"]
