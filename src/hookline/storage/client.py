"""Qdrant storage client for Hookline.

This module provides the main HooklineStorage class that combines
the subscription and delivery stores through mixins.

Example:
    ```python
    from hookline.storage import HooklineStorage

    async with HooklineStorage(url=":memory:") as storage:
        await storage.store_subscription(subscription)
        matching = await storage.get_subscriptions_for_event("user.created")
    ```
"""

from __future__ import annotations

from typing import Any

from .base import StorageBase
from .deliveries import DeliveryMixin
from .subscriptions import SubscriptionMixin


class HooklineStorage(SubscriptionMixin, DeliveryMixin, StorageBase):
    """Async Qdrant storage for subscriptions and delivery records.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: store/get/list/update/soft-delete subscriptions,
      counter increments
    - DeliveryMixin: create/get/list deliveries, guarded state transitions

    Conditional updates and counter increments are serialized per record
    with asyncio locks held by this instance. Run one storage instance per
    process that mutates deliveries; see DESIGN.md for the multi-process
    caveat.
    """

    async def __aenter__(self) -> HooklineStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


__all__ = ["HooklineStorage"]
