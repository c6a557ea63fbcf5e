"""Delivery history mixin for WebhookService."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hookline.exceptions import ConflictError, NotFoundError
from hookline.models import DeliveryRecord, DeliveryStatus, Subscription

if TYPE_CHECKING:
    from hookline.storage import HooklineStorage
    from hookline.webhooks import DeliveryQueue

logger = logging.getLogger(__name__)


class DeliveryOpsMixin:
    """Mixin providing delivery history and manual redelivery.

    Expects these attributes from the base class:
    - storage: HooklineStorage
    - queue: DeliveryQueue
    """

    storage: HooklineStorage
    queue: DeliveryQueue

    async def _subscription_with_history(self, subscription_id: str) -> Subscription:
        # History stays readable after a soft delete
        subscription = await self.storage.get_subscription(subscription_id, include_deleted=True)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    async def list_deliveries(
        self,
        subscription_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DeliveryRecord], int]:
        """Delivery history of a subscription, newest first.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        await self._subscription_with_history(subscription_id)
        return await self.storage.list_deliveries(
            subscription_id, status=status, limit=limit, offset=offset
        )

    async def get_delivery(self, subscription_id: str, delivery_id: str) -> DeliveryRecord:
        """Get one delivery record of a subscription.

        Raises:
            NotFoundError: If the record is missing or belongs to another
                subscription.
        """
        await self._subscription_with_history(subscription_id)
        record = await self.storage.get_delivery(delivery_id)
        if record is None or record.subscription_id != subscription_id:
            raise NotFoundError("Delivery", delivery_id)
        return record

    async def redeliver(self, subscription_id: str, delivery_id: str) -> DeliveryRecord:
        """Send a past delivery again as a new pending record.

        The new record carries the same event name and payload snapshot.
        The original record is left untouched, so terminal records stay
        terminal.

        Raises:
            NotFoundError: If the subscription or delivery does not exist.
            ConflictError: If the subscription is not active.
        """
        original = await self.get_delivery(subscription_id, delivery_id)
        subscription = await self._subscription_with_history(subscription_id)
        if not subscription.is_active():
            raise ConflictError(
                f"Subscription {subscription_id} is not active; resume it before redelivering"
            )

        record = DeliveryRecord(
            subscription_id=subscription_id,
            event_name=original.event_name,
            payload=original.payload,
        )
        await self.storage.create_delivery(record)
        await self.queue.enqueue(record.id)
        logger.info("Redelivering %s as %s", delivery_id, record.id)
        return record


__all__ = ["DeliveryOpsMixin"]
