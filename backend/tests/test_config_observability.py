"""
Unit Tests for configuration, structured logging and alert redaction

Run with: pytest tests/test_config_observability.py -v
"""

import json
import logging
import sys

import pytest

from config import Settings
from logging_config import JSONFormatter
from middleware.rate_limit import rate_limit_headers
from sentry_integration import filter_sensitive_data, redact_dict


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:

    def test_defaults_are_valid(self):
        settings = make_settings(DATABASE_URL="postgresql+asyncpg://db/ledger")
        assert settings.validate_production_config() == []
        assert settings.RETRY_MAX_RETRIES == 3
        assert settings.BREAKER_FAILURE_THRESHOLD == 5
        assert settings.API_RATE_LIMIT == 100

    def test_development_without_database_is_valid(self):
        assert make_settings(ENVIRONMENT="development").validate_production_config() == []

    def test_production_requires_database(self):
        settings = make_settings(ENVIRONMENT="production", CORS_ORIGINS="https://a.example", SERVICE_TOKEN="t")
        assert settings.validate_production_config() == ["DATABASE_URL is required"]

    def test_production_rejects_wildcard_cors_and_missing_token(self):
        settings = make_settings(
            ENVIRONMENT="production",
            DATABASE_URL="postgresql+asyncpg://db/ledger",
            CORS_ORIGINS="*",
        )

        errors = settings.validate_production_config()

        assert "CORS_ORIGINS cannot be '*' in production" in errors
        assert "SERVICE_TOKEN is required for downstream consumers" in errors

    def test_inverted_thresholds_rejected(self):
        settings = make_settings(
            DATABASE_URL="postgresql+asyncpg://db/ledger",
            RECON_SUGGESTION_THRESHOLD=0.8,
            RECON_FUZZY_THRESHOLD=0.6,
        )
        assert any("RECON thresholds" in e for e in settings.validate_production_config())

    def test_database_url_from_parts(self):
        settings = make_settings(
            POSTGRES_HOST="db.internal",
            POSTGRES_USER="ledger",
            POSTGRES_PASSWORD="pw",
        )
        assert settings.get_database_url() == "postgresql+asyncpg://ledger:pw@db.internal:5432/ledger_core?ssl=require"

    def test_no_database_configuration_raises(self):
        with pytest.raises(ValueError):
            make_settings().get_database_url()

    def test_cors_origins(self):
        prod = make_settings(ENVIRONMENT="production", CORS_ORIGINS="https://a.example, https://b.example")
        assert prod.cors_origins_list == ["https://a.example", "https://b.example"]

        dev = make_settings(ENVIRONMENT="development")
        assert "http://localhost:3000" in dev.cors_origins_list

    def test_ledger_event_prefixes(self):
        settings = make_settings(LEDGER_EVENT_PREFIXES="mercury.transaction, stripe.charge ,")
        assert settings.ledger_event_prefixes == ("mercury.transaction", "stripe.charge")


class TestJSONFormatter:

    def test_record_with_extra_fields(self):
        record = logging.LogRecord("webhooks.dispatcher", logging.INFO, __file__, 10, "dispatched %s", ("evt_1",), None)
        record.source = "mercury"

        data = json.loads(JSONFormatter(service_name="ledger-core").format(record))

        assert data["message"] == "dispatched evt_1"
        assert data["level"] == "INFO"
        assert data["service"] == "ledger-core"
        assert data["extra"] == {"source": "mercury"}

    def test_exception_is_serialised(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "boom"


class TestRedaction:

    def test_nested_secrets_redacted(self):
        redacted = redact_dict({
            "Authorization": "Bearer abc",
            "payload": {"service_token": "t", "amount": "10.00"},
            "items": [{"password": "p"}, "plain"],
        })

        assert redacted["Authorization"] == "[REDACTED]"
        assert redacted["payload"] == {"service_token": "[REDACTED]", "amount": "10.00"}
        assert redacted["items"] == [{"password": "[REDACTED]"}, "plain"]

    def test_event_headers_filtered(self):
        event = {"request": {"headers": {"authorization": "Bearer abc", "x-event-id": "evt_1"}}}

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"] == {"authorization": "[REDACTED]", "x-event-id": "evt_1"}


class TestRateLimitHeaders:

    def test_reset_is_epoch_milliseconds(self):
        headers = rate_limit_headers(42, now=1_700_000_000.0)
        assert headers == {"Retry-After": "42", "X-RateLimit-Reset": "1700000042000"}

    def test_default_retry_after(self):
        assert rate_limit_headers(None, now=0.0)["Retry-After"] == "60"
