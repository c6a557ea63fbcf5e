"""Signing secret rotation with a grace period for the previous secret."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from hookline.config import Settings, settings as default_settings
from hookline.exceptions import NotFoundError
from hookline.models import Subscription, generate_secret, utcnow

if TYPE_CHECKING:
    from hookline.storage import HooklineStorage

logger = logging.getLogger(__name__)


class RotationResult(BaseModel):
    """Outcome of a secret rotation.

    ``new_secret`` is the only place the new secret is handed out; it is
    never returned by reads of the subscription.
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str
    new_secret: str = Field(repr=False)
    rotated_at: datetime
    previous_secret_expires_at: datetime
    grace_period_days: int


class SecretRotationManager:
    """Rotates subscription secrets and expires the previous ones.

    After ``rotate`` the subscription signs with the new secret
    immediately, while receivers keep accepting the previous secret until
    ``rotated_at + grace_period_days``.
    """

    def __init__(self, storage: HooklineStorage, settings: Settings | None = None) -> None:
        self._storage = storage
        self._settings = settings or default_settings

    @property
    def default_grace_period_days(self) -> int:
        return self._settings.signing.rotation_grace_period_days

    async def rotate(
        self,
        subscription_id: str,
        grace_period_days: int | None = None,
    ) -> RotationResult:
        """Generate a new current secret and keep the old one as previous.

        Rotating again inside a grace window discards the older previous
        secret; only one previous secret is kept.

        Raises:
            NotFoundError: If the subscription does not exist or is deleted.
        """
        days = self.default_grace_period_days if grace_period_days is None else grace_period_days
        if days < 0:
            raise ValueError("grace_period_days must be >= 0")

        subscription = await self._storage.get_subscription(subscription_id, include_deleted=False)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)

        now = utcnow()
        new_secret = generate_secret()
        updated = await self._storage.update_subscription(
            subscription_id,
            previous_secret=subscription.current_secret,
            current_secret=new_secret,
            rotated_at=now,
        )
        if updated is None:
            raise NotFoundError("Subscription", subscription_id)

        expires_at = updated.previous_secret_expires_at(days)
        assert expires_at is not None
        logger.info(
            "Rotated secret of subscription %s, previous secret valid until %s",
            subscription_id,
            expires_at.isoformat(),
        )
        return RotationResult(
            subscription_id=subscription_id,
            new_secret=new_secret,
            rotated_at=now,
            previous_secret_expires_at=expires_at,
            grace_period_days=days,
        )

    def is_previous_secret_valid(
        self,
        subscription: Subscription,
        now: datetime | None = None,
        grace_period_days: int | None = None,
    ) -> bool:
        days = self.default_grace_period_days if grace_period_days is None else grace_period_days
        return subscription.is_previous_secret_valid(days, now=now)

    async def clear_previous_secret(self, subscription_id: str) -> Subscription:
        """Drop the previous secret immediately, ending its grace window.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        updated = await self._storage.update_subscription(
            subscription_id,
            previous_secret=None,
            rotated_at=None,
        )
        if updated is None:
            raise NotFoundError("Subscription", subscription_id)
        logger.info("Cleared previous secret of subscription %s", subscription_id)
        return updated

    async def cleanup_expired(
        self,
        grace_period_days: int | None = None,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> list[str]:
        """Clear previous secrets whose grace window has passed.

        Meant to run on a schedule. With ``dry_run`` nothing is written.

        Returns:
            IDs of the subscriptions that were (or would be) cleaned.
        """
        days = self.default_grace_period_days if grace_period_days is None else grace_period_days
        now = now or utcnow()

        expired = [
            s.id
            for s in await self._storage.list_rotated_subscriptions()
            if not s.is_previous_secret_valid(days, now=now)
        ]
        if dry_run:
            logger.info("Dry run: %d expired previous secrets would be cleared", len(expired))
            return expired

        for subscription_id in expired:
            await self.clear_previous_secret(subscription_id)
        logger.info("Cleared %d expired previous secrets", len(expired))
        return expired


__all__ = ["RotationResult", "SecretRotationManager"]
