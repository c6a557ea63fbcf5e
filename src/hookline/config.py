"""Configuration management for Hookline."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Upper bound for the default and any per-subscription HTTP timeout
MAX_DELIVERY_TIMEOUT_SECONDS = 300

# Domain event type tag -> webhook event name
DEFAULT_WEBHOOK_EVENTS: dict[str, str] = {
    "user_created": "user.created",
    "user_updated": "user.updated",
    "user_deleted": "user.deleted",
    "user_restored": "user.restored",
    "user_logged_in": "user.logged_in",
    "user_logged_out": "user.logged_out",
    "role_assigned": "role.assigned",
    "role_removed": "role.removed",
    "permission_granted": "permission.granted",
    "permission_revoked": "permission.revoked",
}


class RetryPolicy(BaseModel):
    """Retry limits and exponential backoff for failed deliveries.

    The delay before the next attempt is:
        min(initial_delay_seconds * backoff_multiplier ** (attempt - 1), max_delay_seconds)

    where ``attempt`` is the number of the attempt that just failed, so the
    first retry waits ``initial_delay_seconds``.

    Attributes:
        max_retries: Total delivery attempts before a delivery is dead-lettered.
        initial_delay_seconds: Delay after the first failed attempt.
        backoff_multiplier: Growth factor between consecutive delays.
        max_delay_seconds: Upper bound for any single delay.
    """

    max_retries: int = Field(default=3, ge=1, le=10, description="Maximum delivery attempts")
    initial_delay_seconds: float = Field(
        default=60.0, gt=0, description="Delay after the first failed attempt"
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Multiplier applied per failed attempt"
    )
    max_delay_seconds: float = Field(
        default=3600.0, gt=0, description="Cap for a single retry delay"
    )

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "RetryPolicy":
        """Reject a cap below the initial delay."""
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"initial_delay_seconds ({self.initial_delay_seconds})"
            )
        return self

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` failed (1-based).

        Examples:
            >>> RetryPolicy().delay_for(1)
            60.0
            >>> RetryPolicy().delay_for(7)
            3600.0
        """
        exponent = max(attempt, 1) - 1
        delay = self.initial_delay_seconds * (self.backoff_multiplier**exponent)
        return float(min(delay, self.max_delay_seconds))


class SigningSettings(BaseModel):
    """Request signing and secret rotation settings.

    Attributes:
        algorithm: HMAC digest algorithm.
        signature_header: Header carrying the hex signature.
        timestamp_header: Header carrying the Unix timestamp that was signed.
        timestamp_tolerance_seconds: Replay window receivers should enforce.
        rotation_grace_period_days: Days a rotated-out secret stays valid.
    """

    algorithm: Literal["sha256"] = Field(default="sha256", description="HMAC digest algorithm")
    signature_header: str = Field(default="X-Webhook-Signature")
    timestamp_header: str = Field(default="X-Webhook-Timestamp")
    timestamp_tolerance_seconds: int = Field(
        default=300, ge=1, description="Accepted clock skew for signed timestamps"
    )
    rotation_grace_period_days: int = Field(
        default=7, ge=0, description="Days the previous secret remains valid after rotation"
    )


class Settings(BaseSettings):
    """Hookline configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKLINE_ prefix. Nested settings use a double underscore:
        HOOKLINE_QDRANT_URL=http://localhost:6333
        HOOKLINE_RETRY__MAX_RETRIES=5
        HOOKLINE_SIGNING__ROTATION_GRACE_PERIOD_DAYS=14
    """

    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL, or ':memory:' for local mode",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="hookline",
        description="Prefix for Qdrant collection names",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=MAX_DELIVERY_TIMEOUT_SECONDS,
        description="Default HTTP timeout for a delivery attempt",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        description="Number of delivery workers in the in-process pool",
    )
    response_body_limit: int = Field(
        default=1000,
        ge=0,
        description="Characters of the response body kept on a delivery record",
    )
    stale_claim_seconds: int = Field(
        default=600,
        ge=1,
        description="Age after which a 'processing' claim is considered abandoned",
    )
    user_agent: str = Field(default="Hookline-Webhook/1.0")

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    signing: SigningSettings = Field(default_factory=SigningSettings)

    webhook_events: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_WEBHOOK_EVENTS),
        description="Domain event type tag -> webhook event name",
    )

    model_config = {
        "env_prefix": "HOOKLINE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_timeout_vs_stale_claim(self) -> "Settings":
        """A claim must outlive the longest request it may guard.

        Subscriptions may raise their own timeout up to
        MAX_DELIVERY_TIMEOUT_SECONDS, and the default is capped there too.
        Otherwise recovery could reclaim a record whose HTTP call is still
        in flight.
        """
        if self.stale_claim_seconds <= MAX_DELIVERY_TIMEOUT_SECONDS:
            raise ValueError(
                f"stale_claim_seconds ({self.stale_claim_seconds}) must exceed "
                f"the longest delivery timeout ({MAX_DELIVERY_TIMEOUT_SECONDS}s)"
            )
        return self

    @property
    def available_events(self) -> list[str]:
        """Webhook event names that subscriptions may listen to."""
        return sorted(set(self.webhook_events.values()))

    def resolve_event_name(self, event_type: str) -> str | None:
        """Map a domain event type tag to its webhook event name, if mapped."""
        return self.webhook_events.get(event_type)


settings = Settings()
