"""Hookline exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HooklineError for easy catching.
"""

from __future__ import annotations


class HooklineError(Exception):
    """Base exception for all Hookline errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookline_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HooklineError):
    """Invalid input provided.

    Raised when administrative input fails validation checks, e.g. an
    unknown event name in a subscription's event list.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HooklineError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class ConflictError(HooklineError):
    """Operation conflicts with the current state of a resource.

    Raised e.g. when redelivering to a subscription that is not active.
    """

    code: str = "conflict"


class StorageError(HooklineError):
    """Storage operation failed."""

    code: str = "storage_error"


class DeliveryError(HooklineError):
    """Outbound webhook delivery failed in a way the worker cannot classify."""

    code: str = "delivery_error"


class ConfigurationError(HooklineError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
