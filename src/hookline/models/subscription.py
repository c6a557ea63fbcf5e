"""Webhook subscription model.

A subscription is one externally registered endpoint together with its
signing secrets, the events it listens to and its retry configuration.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from hookline.config import MAX_DELIVERY_TIMEOUT_SECONDS

from .base import generate_id, generate_secret, utcnow

MAX_URL_LENGTH = 2048


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a subscription. Only ACTIVE receives deliveries."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"


class Subscription(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier for this subscription.
        name: Human-readable label.
        owner_id: Tenant/user that registered the endpoint (optional).
        url: Absolute http(s) endpoint receiving events.
        current_secret: Active signing secret. Never exposed after creation.
        previous_secret: Secret replaced by the last rotation, if still kept.
        rotated_at: When the last rotation happened, if previous_secret is kept.
        subscribed_events: Webhook event names; empty means all events.
        status: active, inactive or paused.
        timeout_seconds: Per-subscription HTTP timeout override.
        max_retries: Per-subscription attempt limit override.
        success_count: Deliveries that ended in success.
        failure_count: Deliveries that were dead-lettered after retries.
        last_triggered_at: Last delivery attempt to this endpoint.
        last_success_at: Last successful delivery.
        last_failure_at: Last permanent delivery failure.
        deleted_at: Soft-delete marker; deleted subscriptions are never dispatched to.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    name: str = Field(min_length=1, max_length=255, description="Human-readable label")
    owner_id: str | None = Field(default=None, description="Owning tenant or user")
    url: HttpUrl = Field(description="Endpoint receiving webhook events")
    current_secret: str = Field(
        default_factory=generate_secret,
        min_length=32,
        max_length=255,
        repr=False,
        description="Active HMAC signing secret",
    )
    previous_secret: str | None = Field(
        default=None, repr=False, description="Secret replaced by the last rotation"
    )
    rotated_at: datetime | None = Field(default=None, description="When the secret was rotated")
    subscribed_events: list[str] = Field(
        default_factory=list,
        description="Event names to receive; empty means all events",
    )
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    timeout_seconds: int | None = Field(default=None, ge=5, le=MAX_DELIVERY_TIMEOUT_SECONDS)
    max_retries: int | None = Field(default=None, ge=1, le=10)

    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: datetime | None = None

    @field_validator("url")
    @classmethod
    def _url_length(cls, value: HttpUrl) -> HttpUrl:
        if len(str(value)) > MAX_URL_LENGTH:
            raise ValueError(f"url must be at most {MAX_URL_LENGTH} characters")
        return value

    @model_validator(mode="after")
    def _previous_secret_has_rotation_time(self) -> Subscription:
        """previous_secret and rotated_at are set and cleared together."""
        if (self.previous_secret is None) != (self.rotated_at is None):
            raise ValueError("previous_secret and rotated_at must both be set or both be null")
        return self

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_active(self) -> bool:
        """Whether new deliveries may be sent to this subscription."""
        return self.status == SubscriptionStatus.ACTIVE and not self.is_deleted

    def listens_to(self, event_name: str) -> bool:
        """Check if this subscription wants the given webhook event."""
        if not self.subscribed_events:
            return True
        return event_name in self.subscribed_events

    def effective_max_retries(self, default: int) -> int:
        return self.max_retries if self.max_retries is not None else default

    def effective_timeout(self, default: float) -> float:
        return float(self.timeout_seconds) if self.timeout_seconds is not None else default

    def previous_secret_expires_at(self, grace_period_days: int) -> datetime | None:
        """When the rotated-out secret stops being accepted."""
        if self.rotated_at is None:
            return None
        return self.rotated_at + timedelta(days=grace_period_days)

    def is_previous_secret_valid(
        self, grace_period_days: int, now: datetime | None = None
    ) -> bool:
        """True iff a previous secret exists and its grace window is still open."""
        if self.previous_secret is None or self.rotated_at is None:
            return False
        expires_at = self.previous_secret_expires_at(grace_period_days)
        assert expires_at is not None
        return (now or utcnow()) < expires_at


__all__ = [
    "Subscription",
    "SubscriptionStatus",
]
