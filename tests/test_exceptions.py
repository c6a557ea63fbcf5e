"""Tests for Hookline exception hierarchy."""

import pytest

from hookline.exceptions import (
    ConfigurationError,
    ConflictError,
    DeliveryError,
    HooklineError,
    NotFoundError,
    StorageError,
    ValidationError,
)


class TestHooklineError:
    """Tests for the base HooklineError class."""

    def test_error_message(self):
        """Should store and return message."""
        error = HooklineError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_error_code(self):
        assert HooklineError("test").code == "hookline_error"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        assert HooklineError("Something went wrong").to_dict() == {
            "error": {
                "code": "hookline_error",
                "message": "Something went wrong",
            }
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from HooklineError."""
        exceptions = [
            ValidationError("field", "invalid"),
            NotFoundError("Subscription", "sub_1"),
            ConflictError("inactive"),
            StorageError("failed"),
            DeliveryError("failed"),
            ConfigurationError("missing"),
        ]
        for exc in exceptions:
            assert isinstance(exc, HooklineError)
            assert isinstance(exc, Exception)


class TestValidationError:
    """Tests for ValidationError."""

    def test_field_and_message(self):
        error = ValidationError("url", "must be https")
        assert error.field == "url"
        assert "url" in error.message
        assert "must be https" in error.message
        assert error.code == "validation_error"

    def test_to_dict_includes_field(self):
        result = ValidationError("subscribed_events", "unknown event").to_dict()
        assert result["error"]["field"] == "subscribed_events"
        assert result["error"]["code"] == "validation_error"


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_resource_info(self):
        error = NotFoundError("Subscription", "sub_123")
        assert error.resource_type == "Subscription"
        assert error.resource_id == "sub_123"
        assert error.message == "Subscription not found: sub_123"

    def test_to_dict(self):
        result = NotFoundError("Delivery", "dlv_1").to_dict()
        assert result["error"]["code"] == "not_found"
        assert result["error"]["resource_type"] == "Delivery"
        assert result["error"]["resource_id"] == "dlv_1"


@pytest.mark.parametrize(
    ("exc_type", "code"),
    [
        (ConflictError, "conflict"),
        (StorageError, "storage_error"),
        (DeliveryError, "delivery_error"),
        (ConfigurationError, "configuration_error"),
    ],
)
def test_error_codes(exc_type, code):
    """Each error type carries its own machine-readable code."""
    error = exc_type("boom")
    assert error.code == code
    assert error.to_dict() == {"error": {"code": code, "message": "boom"}}
