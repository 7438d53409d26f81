"""Tests for configuration loading."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from stashway.config import GeminiSettings, PaymentSettings, validate_all_settings


class TestPaymentSettings:

    def test_defaults(self):
        settings = PaymentSettings()
        assert settings.plan_prices["pro"] == Decimal("3762")
        assert settings.payee_identifier == "6335874"
        assert settings.amount_tolerance == Decimal("1")
        assert settings.max_upload_size_bytes == 10 * 1024 * 1024
        assert settings.supported_formats_list == ["png", "jpeg", "webp"]

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PAYMENTS_ADMIN_EMAILS", "One@Stashway.app, two@stashway.app,")
        monkeypatch.setenv("PAYMENTS_REQUEST_LIFETIME_HOURS", "24")
        settings = PaymentSettings()
        assert settings.admin_email_list == ["one@stashway.app", "two@stashway.app"]
        assert settings.request_lifetime_hours == 24

    def test_short_secrets_not_allowed(self):
        with pytest.raises(ValidationError):
            PaymentSettings(min_secret_length=16)


class TestGeminiSettings:

    def test_api_key_required(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ValidationError):
            GeminiSettings()

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            GeminiSettings(api_key="k", request_timeout_seconds=0)


class TestValidateAllSettings:

    def test_reports_each_section(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        results = validate_all_settings()
        assert results["payments"] is True
        assert results["app"] is True
        assert results["gemini"] is False
        assert "gemini_error" in results
