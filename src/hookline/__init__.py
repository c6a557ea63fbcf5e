"""Hookline: signed, retried webhook delivery for domain events.

Application code emits domain events; Hookline fans each event out to the
subscriptions listening to it, signs every request with HMAC-SHA256 and
retries failed deliveries with exponential backoff.

Quick Start:
    from hookline.models import UserCreated, UserRef
    from hookline.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription, secret = await hooks.create_subscription(
            name="CRM sync",
            url="https://crm.example.com/hooks",
            subscribed_events=["user.created"],
        )
        hooks.emit(UserCreated(user=UserRef(id="u1", name="Ada", email="ada@example.com")))

Receivers verify requests with ``hookline.webhooks.verify_request``.
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryPolicy, Settings, SigningSettings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    ConflictError,
    DeliveryError,
    HooklineError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryRecord,
    DeliveryStatus,
    DomainEvent,
    Subscription,
    SubscriptionStatus,
    WebhookPayload,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "RetryPolicy",
    "Settings",
    "SigningSettings",
    "settings",
    # Exceptions
    "HooklineError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "DeliveryError",
    "ConfigurationError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "DeliveryRecord",
    "DeliveryStatus",
    "DomainEvent",
    "Subscription",
    "SubscriptionStatus",
    "WebhookPayload",
]
