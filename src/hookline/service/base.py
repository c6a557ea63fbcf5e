"""Core Hookline service layer.

This module provides the main WebhookService that wires storage, the
delivery queue, the dispatcher, the worker and secret rotation into one
object with a lifecycle.

Example:
    ```python
    from hookline.models import UserCreated, UserRef
    from hookline.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription, secret = await hooks.create_subscription(
            name="CRM sync",
            url="https://crm.example.com/hooks",
            subscribed_events=["user.created"],
        )

        # Fire and forget from application code
        hooks.emit(UserCreated(user=UserRef(id="u1", name="Ada", email="ada@example.com")))
    ```
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from hookline.config import Settings
from hookline.models import DomainEventBase
from hookline.storage import HooklineStorage
from hookline.webhooks import (
    AlertSink,
    DeliveryQueue,
    DeliveryWorker,
    EventDispatcher,
    InProcessDeliveryQueue,
    LogAlertSink,
    SecretRotationManager,
)

from .deliveries import DeliveryOpsMixin
from .subscriptions import SubscriptionOpsMixin

logger = logging.getLogger(__name__)


@dataclass
class WebhookService(SubscriptionOpsMixin, DeliveryOpsMixin):
    """High-level webhook service.

    This service provides:
    - emit()/dispatch(): fan domain events out to subscriptions
    - subscription administration (create, update, pause, rotate, ...)
    - delivery history and redelivery

    Uses dependency injection for storage, queue and alerting, making it
    easy to test and configure.

    Attributes:
        storage: Storage backend (Qdrant).
        settings: Configuration settings.
        queue: Delivery queue (defaults to InProcessDeliveryQueue).
        alerts: Sink for permanent failures (defaults to LogAlertSink).
    """

    storage: HooklineStorage
    settings: Settings
    queue: DeliveryQueue | None = field(default=None)
    alerts: AlertSink | None = field(default=None)

    dispatcher: EventDispatcher = field(init=False, repr=False)
    worker: DeliveryWorker = field(init=False, repr=False)
    rotation: SecretRotationManager = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the pipeline components after dataclass construction."""
        if self.queue is None:
            self.queue = InProcessDeliveryQueue(self.settings.max_concurrent_deliveries)
        if self.alerts is None:
            self.alerts = LogAlertSink()
        self.dispatcher = EventDispatcher(self.storage, self.queue, self.settings)
        self.worker = DeliveryWorker(self.storage, self.queue, self.settings, self.alerts)
        self.rotation = SecretRotationManager(self.storage, self.settings)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=HooklineStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
            ),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize storage, start the queue and recover open deliveries."""
        await self.storage.initialize()
        assert self.queue is not None
        await self.queue.start(self.worker.process)
        await self.worker.recover()

    async def close(self) -> None:
        """Stop consuming, finish background dispatches and release clients."""
        await self.dispatcher.drain()
        if self.queue is not None:
            await self.queue.stop()
        await self.worker.close()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def dispatch(self, event: DomainEventBase) -> list[str]:
        """Dispatch an event and wait for its delivery records to be created."""
        return await self.dispatcher.dispatch(event)

    def emit(self, event: DomainEventBase) -> asyncio.Task[list[str]]:
        """Dispatch an event without waiting. Errors are only logged."""
        return self.dispatcher.dispatch_in_background(event)


__all__ = ["WebhookService"]
