"""Delivery record model.

One record exists per (event, subscription) pair. The same record is
mutated across retries; it is never recreated.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utcnow


class DeliveryStatus(str, Enum):
    """Delivery state machine: pending -> processing -> success | failed.

    FAILED is terminal only once ``failed_at`` is set; before that it marks a
    failed attempt waiting for its retry.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


# Statuses from which a worker may claim a record
CLAIMABLE_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.FAILED})


class DeliveryRecord(BaseModel):
    """Record of the delivery of one event to one subscription.

    Attributes:
        id: Unique identifier for this delivery.
        subscription_id: Owning subscription.
        event_name: Webhook event name (e.g. "user.created").
        payload: Snapshot of the request body taken at dispatch time.
        status: Current state (pending, processing, success, failed).
        attempts: Delivery attempts made so far.
        response_code: HTTP status code of the most recent attempt.
        response_body: Truncated response body of the most recent attempt.
        error_message: Error of the most recent failed attempt.
        next_attempt_at: When the scheduled retry becomes due.
        claimed_at: When the current processing claim was taken.
        delivered_at: Set once on success.
        failed_at: Set once on permanent failure.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str
    event_name: str
    payload: dict[str, Any] = Field(description="Request body snapshot")
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    next_attempt_at: datetime | None = None
    claimed_at: datetime | None = None
    delivered_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Success, or failure with no retries left. Never mutated again."""
        return self.status == DeliveryStatus.SUCCESS or self.failed_at is not None

    @property
    def is_claimable(self) -> bool:
        return not self.is_terminal and self.status in CLAIMABLE_STATUSES


__all__ = [
    "CLAIMABLE_STATUSES",
    "DeliveryRecord",
    "DeliveryStatus",
]
