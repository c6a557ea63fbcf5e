"""Subscription administration mixin for WebhookService.

Provides create, read, update, pause/resume, soft delete and secret
rotation of subscriptions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pydantic

from hookline.exceptions import NotFoundError, ValidationError
from hookline.models import Subscription, SubscriptionStatus

if TYPE_CHECKING:
    from hookline.config import Settings
    from hookline.storage import HooklineStorage
    from hookline.webhooks import RotationResult, SecretRotationManager

logger = logging.getLogger(__name__)

# Fields an administrator may change after creation
UPDATABLE_FIELDS = frozenset(
    {"name", "url", "subscribed_events", "status", "timeout_seconds", "max_retries"}
)


def to_validation_error(exc: pydantic.ValidationError) -> ValidationError:
    """Convert the first pydantic error into a Hookline ValidationError."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "subscription"
    return ValidationError(field, first.get("msg", "invalid value"))


class SubscriptionOpsMixin:
    """Mixin providing subscription administration.

    Expects these attributes from the base class:
    - storage: HooklineStorage
    - settings: Settings
    - rotation: SecretRotationManager
    """

    storage: HooklineStorage
    settings: Settings
    rotation: SecretRotationManager

    @property
    def available_events(self) -> list[str]:
        """Webhook event names subscriptions may listen to."""
        return self.settings.available_events

    def _validate_events(self, events: list[str]) -> list[str]:
        known = set(self.available_events)
        unknown = sorted(set(events) - known)
        if unknown:
            raise ValidationError(
                "subscribed_events",
                f"unknown event(s): {', '.join(unknown)}",
            )
        # Keep order, drop duplicates
        return list(dict.fromkeys(events))

    async def create_subscription(
        self,
        name: str,
        url: str,
        subscribed_events: list[str] | None = None,
        owner_id: str | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        timeout_seconds: int | None = None,
        max_retries: int | None = None,
        secret: str | None = None,
    ) -> tuple[Subscription, str]:
        """Register a new endpoint.

        Args:
            name: Human-readable label.
            url: Absolute http(s) endpoint URL.
            subscribed_events: Event names to receive; empty or None means all.
            owner_id: Owning tenant or user.
            status: Initial status.
            timeout_seconds: HTTP timeout override (5-300).
            max_retries: Attempt limit override (1-10).
            secret: Caller-chosen signing secret (at least 32 characters).
                Generated when omitted.

        Returns:
            Tuple of (subscription, signing secret). This is the only time
            the secret is returned.

        Raises:
            ValidationError: If any field is invalid.
        """
        events = self._validate_events(subscribed_events or [])
        fields: dict[str, Any] = {
            "name": name,
            "url": url,
            "subscribed_events": events,
            "owner_id": owner_id,
            "status": status,
            "timeout_seconds": timeout_seconds,
            "max_retries": max_retries,
        }
        if secret is not None:
            fields["current_secret"] = secret
        try:
            subscription = Subscription(**fields)
        except pydantic.ValidationError as e:
            raise to_validation_error(e) from e

        await self.storage.store_subscription(subscription)
        logger.info(
            "Created subscription %s for %s (%d events)",
            subscription.id,
            subscription.url,
            len(events),
        )
        return subscription, subscription.current_secret

    async def get_subscription(self, subscription_id: str) -> Subscription:
        """Get a subscription that has not been deleted.

        Raises:
            NotFoundError: If missing or soft-deleted.
        """
        subscription = await self.storage.get_subscription(subscription_id, include_deleted=False)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    async def list_subscriptions(
        self,
        owner_id: str | None = None,
        status: SubscriptionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Subscription], int]:
        return await self.storage.list_subscriptions(
            owner_id=owner_id, status=status, limit=limit, offset=offset
        )

    async def update_subscription(self, subscription_id: str, **changes: Any) -> Subscription:
        """Change administrator-editable fields of a subscription.

        Secrets, counters and timestamps cannot be changed here; use
        ``rotate_secret`` for the secret.

        Raises:
            NotFoundError: If missing or soft-deleted.
            ValidationError: If a field is unknown or invalid.
        """
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "field cannot be updated")
        if "subscribed_events" in changes:
            changes["subscribed_events"] = self._validate_events(
                changes["subscribed_events"] or []
            )

        await self.get_subscription(subscription_id)
        try:
            updated = await self.storage.update_subscription(subscription_id, **changes)
        except pydantic.ValidationError as e:
            raise to_validation_error(e) from e
        if updated is None:
            raise NotFoundError("Subscription", subscription_id)

        logger.info("Updated subscription %s: %s", subscription_id, ", ".join(sorted(changes)))
        return updated

    async def pause_subscription(self, subscription_id: str) -> Subscription:
        """Stop deliveries; queued retries are finalized as inactive."""
        return await self.update_subscription(subscription_id, status=SubscriptionStatus.PAUSED)

    async def resume_subscription(self, subscription_id: str) -> Subscription:
        return await self.update_subscription(subscription_id, status=SubscriptionStatus.ACTIVE)

    async def delete_subscription(self, subscription_id: str) -> Subscription:
        """Soft-delete a subscription, keeping its delivery history.

        Raises:
            NotFoundError: If missing or already deleted.
        """
        await self.get_subscription(subscription_id)
        deleted = await self.storage.soft_delete_subscription(subscription_id)
        if deleted is None:
            raise NotFoundError("Subscription", subscription_id)
        logger.info("Deleted subscription %s", subscription_id)
        return deleted

    async def rotate_secret(
        self,
        subscription_id: str,
        grace_period_days: int | None = None,
    ) -> RotationResult:
        """Rotate the signing secret; the new secret is returned once."""
        if grace_period_days is not None and grace_period_days < 0:
            raise ValidationError("grace_period_days", "must be >= 0")
        return await self.rotation.rotate(subscription_id, grace_period_days)

    async def cleanup_expired_secrets(
        self,
        grace_period_days: int | None = None,
        dry_run: bool = False,
    ) -> list[str]:
        """Clear previous secrets whose grace window has passed."""
        return await self.rotation.cleanup_expired(grace_period_days, dry_run=dry_run)


__all__ = ["SubscriptionOpsMixin", "UPDATABLE_FIELDS", "to_validation_error"]
