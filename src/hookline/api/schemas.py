"""Pydantic schemas for API request/response models.

Response models never carry signing secrets, except the two responses that
hand a new secret out exactly once (create and rotate).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hookline.models import DeliveryRecord, DeliveryStatus, Subscription, SubscriptionStatus


class SubscriptionCreateRequest(BaseModel):
    """Request body for registering an endpoint.

    Attributes:
        name: Human-readable label.
        url: Absolute http(s) endpoint URL.
        subscribed_events: Event names to receive; empty means all events.
        owner_id: Optional owning tenant or user.
        status: Initial status.
        timeout_seconds: HTTP timeout override.
        max_retries: Attempt limit override.
        secret: Optional caller-chosen signing secret.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1, max_length=2048, description="Endpoint URL")
    subscribed_events: list[str] = Field(default_factory=list)
    owner_id: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    timeout_seconds: int | None = Field(default=None, ge=5, le=300)
    max_retries: int | None = Field(default=None, ge=1, le=10)
    secret: str | None = Field(default=None, min_length=32, max_length=255, repr=False)


class SubscriptionUpdateRequest(BaseModel):
    """Partial update of a subscription. Omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = Field(default=None, min_length=1, max_length=2048)
    subscribed_events: list[str] | None = None
    status: SubscriptionStatus | None = None
    timeout_seconds: int | None = Field(default=None, ge=5, le=300)
    max_retries: int | None = Field(default=None, ge=1, le=10)


class SubscriptionResponse(BaseModel):
    """Public view of a subscription."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    owner_id: str | None
    url: str
    subscribed_events: list[str]
    status: SubscriptionStatus
    timeout_seconds: int | None
    max_retries: int | None
    success_count: int
    failure_count: int
    last_triggered_at: datetime | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    rotated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> SubscriptionResponse:
        data = subscription.model_dump(
            exclude={"current_secret", "previous_secret", "deleted_at"},
        )
        data["url"] = str(subscription.url)
        return cls(**data)


class SubscriptionCreatedResponse(SubscriptionResponse):
    """Creation response; the only read that includes the secret."""

    secret: str


class SubscriptionListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[SubscriptionResponse]
    total: int
    limit: int
    offset: int


class RotateSecretRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    grace_period_days: int | None = Field(
        default=None, ge=0, description="Days the previous secret stays valid"
    )


class RotateSecretResponse(BaseModel):
    """Response for a secret rotation.

    Attributes:
        subscription_id: Rotated subscription.
        secret: The new signing secret. Shown once.
        rotated_at: Rotation time.
        previous_secret_expires_at: When the old secret stops verifying.
        grace_period_days: Grace period applied.
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str
    secret: str
    rotated_at: datetime
    previous_secret_expires_at: datetime
    grace_period_days: int


class DeliveryResponse(BaseModel):
    """Public view of a delivery record."""

    model_config = ConfigDict(extra="forbid")

    id: str
    subscription_id: str
    event_name: str
    payload: dict[str, Any]
    status: DeliveryStatus
    attempts: int
    response_code: int | None
    response_body: str | None
    error_message: str | None
    next_attempt_at: datetime | None
    delivered_at: datetime | None
    failed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryResponse:
        return cls(**record.model_dump(exclude={"claimed_at"}))


class DeliveryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[DeliveryResponse]
    total: int
    limit: int
    offset: int


class EventListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: list[str]


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
        queue_running: Whether delivery workers are consuming.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    queue_running: bool = False
