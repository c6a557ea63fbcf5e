"""Fan-out of domain events to matching subscriptions.

The dispatcher performs no subscriber network I/O. For each active
subscription listening to the event it stores one ``pending`` delivery
record holding the payload snapshot and enqueues the record's ID; the
delivery worker does the rest.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from hookline.config import Settings, settings as default_settings
from hookline.models import DeliveryRecord, DomainEventBase, WebhookPayload

if TYPE_CHECKING:
    from hookline.storage import HooklineStorage

    from .queue import DeliveryQueue

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Turns domain events into delivery records.

    Example:
        ```python
        dispatcher = EventDispatcher(storage, queue)

        # Inline, returns the created delivery IDs
        delivery_ids = await dispatcher.dispatch(UserCreated(user=user))

        # From a request handler that must not wait
        dispatcher.dispatch_in_background(UserLoggedIn(user=user, ip_address=ip))
        ```
    """

    def __init__(
        self,
        storage: HooklineStorage,
        queue: DeliveryQueue,
        settings: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._queue = queue
        self._settings = settings or default_settings
        self._background: set[asyncio.Task[list[str]]] = set()

    async def dispatch(self, event: DomainEventBase) -> list[str]:
        """Create and enqueue one delivery per matching subscription.

        Args:
            event: Domain event emitted by the application.

        Returns:
            IDs of the delivery records created. Empty when the event type is
            not mapped to a webhook event or nobody listens to it.
        """
        event_type = getattr(event, "type", None)
        event_name = self._settings.resolve_event_name(event_type) if event_type else None
        if event_name is None:
            logger.debug("Event type %s is not mapped to a webhook event", event_type)
            return []

        subscriptions = await self._storage.get_subscriptions_for_event(event_name)
        if not subscriptions:
            logger.debug("No subscriptions for webhook event %s", event_name)
            return []

        payload = WebhookPayload.from_event(event_name, event).snapshot()
        delivery_ids: list[str] = []

        for subscription in subscriptions:
            record = DeliveryRecord(
                subscription_id=subscription.id,
                event_name=event_name,
                payload=payload,
            )
            try:
                await self._storage.create_delivery(record)
                await self._queue.enqueue(record.id)
            except Exception:
                logger.exception(
                    "Failed to create delivery of %s for subscription %s",
                    event_name,
                    subscription.id,
                )
                continue
            delivery_ids.append(record.id)

        logger.info(
            "Dispatched %s to %d of %d subscriptions",
            event_name,
            len(delivery_ids),
            len(subscriptions),
        )
        return delivery_ids

    def dispatch_in_background(self, event: DomainEventBase) -> asyncio.Task[list[str]]:
        """Schedule ``dispatch`` without awaiting it.

        Errors are logged by the task's done callback and never reach the
        caller.
        """
        task = asyncio.create_task(self.dispatch(event))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[list[str]]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background dispatch failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for in-flight background dispatches."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


__all__ = ["EventDispatcher"]
