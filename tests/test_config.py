"""Unit tests for Hookline configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from factories import make_subscription
from hookline.config import (
    DEFAULT_WEBHOOK_EVENTS,
    MAX_DELIVERY_TIMEOUT_SECONDS,
    RetryPolicy,
    Settings,
    SigningSettings,
)


class TestRetryPolicy:
    """Tests for RetryPolicy model."""

    def test_defaults(self):
        """Defaults should be 3 attempts, 60s initial, x2, 1h cap."""
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.initial_delay_seconds == 60.0
        assert policy.backoff_multiplier == 2.0
        assert policy.max_delay_seconds == 3600.0

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 60.0), (2, 120.0), (3, 240.0), (6, 1920.0), (7, 3600.0), (20, 3600.0)],
    )
    def test_delay_for(self, attempt, expected):
        """Delay doubles per failed attempt and is capped."""
        assert RetryPolicy().delay_for(attempt) == expected

    def test_delay_for_zero_treated_as_first(self):
        """Attempt numbers below 1 use the initial delay."""
        assert RetryPolicy().delay_for(0) == 60.0

    def test_custom_policy(self):
        """Custom values should change the curve."""
        policy = RetryPolicy(initial_delay_seconds=1, backoff_multiplier=3, max_delay_seconds=10)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 3.0, 9.0, 10.0]

    def test_max_retries_bounds(self):
        """max_retries must be between 1 and 10."""
        with pytest.raises(ValidationError):
            RetryPolicy(max_retries=0)
        with pytest.raises(ValidationError):
            RetryPolicy(max_retries=11)

    def test_cap_below_initial_rejected(self):
        """max_delay_seconds must not be below initial_delay_seconds."""
        with pytest.raises(ValidationError):
            RetryPolicy(initial_delay_seconds=100, max_delay_seconds=50)

    def test_multiplier_below_one_rejected(self):
        """Delays must never shrink."""
        with pytest.raises(ValidationError):
            RetryPolicy(backoff_multiplier=0.5)


class TestSigningSettings:
    """Tests for SigningSettings model."""

    def test_defaults(self):
        signing = SigningSettings()
        assert signing.algorithm == "sha256"
        assert signing.signature_header == "X-Webhook-Signature"
        assert signing.timestamp_header == "X-Webhook-Timestamp"
        assert signing.timestamp_tolerance_seconds == 300
        assert signing.rotation_grace_period_days == 7

    def test_only_sha256(self):
        """Other digest algorithms are not supported."""
        with pytest.raises(ValidationError):
            SigningSettings(algorithm="md5")


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.qdrant_url == "http://localhost:6333"
        assert settings.collection_prefix == "hookline"
        assert settings.delivery_timeout_seconds == 30.0
        assert settings.max_concurrent_deliveries == 10
        assert settings.response_body_limit == 1000
        assert settings.stale_claim_seconds == 600
        assert settings.user_agent == "Hookline-Webhook/1.0"

    def test_default_event_map(self):
        """All ten user, role and permission events are mapped."""
        settings = Settings(_env_file=None)
        assert settings.webhook_events == DEFAULT_WEBHOOK_EVENTS
        assert len(settings.available_events) == 10
        assert settings.available_events == sorted(settings.available_events)

    def test_resolve_event_name(self):
        settings = Settings(_env_file=None)
        assert settings.resolve_event_name("user_created") == "user.created"
        assert settings.resolve_event_name("permission_revoked") == "permission.revoked"
        assert settings.resolve_event_name("file_uploaded") is None

    def test_custom_event_map(self):
        """Mapping an extra event type makes it available."""
        settings = Settings(
            _env_file=None,
            webhook_events={**DEFAULT_WEBHOOK_EVENTS, "file_uploaded": "file.uploaded"},
        )
        assert "file.uploaded" in settings.available_events

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        assert Settings(log_format="json").log_format == "json"
        assert Settings(log_format="text").log_format == "text"
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_stale_claim_must_exceed_timeout(self):
        """A claim must outlive the request it guards."""
        with pytest.raises(ValidationError):
            Settings(delivery_timeout_seconds=60, stale_claim_seconds=60)

    def test_stale_claim_must_exceed_subscription_timeout_bound(self):
        """Subscriptions may use timeouts up to 300s above the default."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None, stale_claim_seconds=200)
        assert "300" in str(exc_info.value)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, stale_claim_seconds=MAX_DELIVERY_TIMEOUT_SECONDS)
        assert Settings(_env_file=None, stale_claim_seconds=301).stale_claim_seconds == 301

    def test_subscription_timeout_capped_at_bound(self):
        with pytest.raises(ValidationError):
            make_subscription(timeout_seconds=MAX_DELIVERY_TIMEOUT_SECONDS + 1)
        assert make_subscription(timeout_seconds=300).timeout_seconds == 300

    def test_env_prefix(self):
        """Settings should use HOOKLINE_ prefix for environment variables."""
        with patch.dict(os.environ, {"HOOKLINE_LOG_LEVEL": "DEBUG"}):
            settings = Settings()
            assert settings.log_level == "DEBUG"

    def test_env_qdrant_url(self):
        """HOOKLINE_QDRANT_URL should override default."""
        with patch.dict(os.environ, {"HOOKLINE_QDRANT_URL": "http://qdrant:6333"}):
            settings = Settings()
            assert settings.qdrant_url == "http://qdrant:6333"

    def test_env_nested_retry(self):
        """Nested settings use a double underscore delimiter."""
        with patch.dict(
            os.environ,
            {
                "HOOKLINE_RETRY__MAX_RETRIES": "5",
                "HOOKLINE_SIGNING__ROTATION_GRACE_PERIOD_DAYS": "14",
            },
        ):
            settings = Settings()
            assert settings.retry.max_retries == 5
            assert settings.signing.rotation_grace_period_days == 14
