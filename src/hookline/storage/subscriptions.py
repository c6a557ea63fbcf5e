"""Subscription storage operations for Hookline.

Provides methods to store, retrieve, update and soft-delete webhook
subscriptions, plus the counter primitives used by the delivery worker.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from hookline.models import Subscription, SubscriptionStatus, utcnow

if TYPE_CHECKING:
    from qdrant_client import models

_KIND = "subscriptions"

# Counter field -> timestamp field stamped together with it
_COUNTER_TIMESTAMPS = {
    "success_count": "last_success_at",
    "failure_count": "last_failure_at",
}


class SubscriptionMixin:
    """Mixin providing subscription operations for HooklineStorage.

    This mixin expects the following attributes/methods from the base class:
    - _upsert_payload(kind, record_id, payload)
    - _retrieve_payload(kind, record_id) -> dict | None
    - _set_payload(kind, record_id, values)
    - _scroll_payloads(kind, filter) -> AsyncIterator[dict]
    - _lock_for(key) -> async context manager holding the record lock
    - _match(key, value) -> FieldCondition
    """

    _upsert_payload: Any
    _retrieve_payload: Any
    _set_payload: Any
    _scroll_payloads: Any
    _lock_for: Any
    _match: Any

    @staticmethod
    def _subscription_to_payload(subscription: Subscription) -> dict[str, Any]:
        payload = subscription.model_dump(mode="json")
        # Filterable mirror of deleted_at (Qdrant cannot match on null)
        payload["deleted"] = subscription.deleted_at is not None
        return payload

    @staticmethod
    def _payload_to_subscription(payload: dict[str, Any]) -> Subscription:
        payload.pop("deleted", None)
        return Subscription.model_validate(payload)

    async def store_subscription(self, subscription: Subscription) -> str:
        """Store (insert or replace) a subscription.

        Returns:
            The subscription ID.
        """
        await self._upsert_payload(
            _KIND, subscription.id, self._subscription_to_payload(subscription)
        )
        return subscription.id

    async def get_subscription(
        self,
        subscription_id: str,
        include_deleted: bool = True,
    ) -> Subscription | None:
        """Get a subscription by ID.

        Args:
            subscription_id: ID of the subscription.
            include_deleted: Whether soft-deleted subscriptions are returned.

        Returns:
            Subscription or None if not found.
        """
        payload = await self._retrieve_payload(_KIND, subscription_id)
        if payload is None:
            return None
        subscription = self._payload_to_subscription(payload)
        if subscription.is_deleted and not include_deleted:
            return None
        return subscription

    def _subscription_filter(
        self,
        owner_id: str | None = None,
        status: SubscriptionStatus | None = None,
        include_deleted: bool = False,
    ) -> models.Filter | None:
        from qdrant_client import models

        conditions: list[models.Condition] = []
        if owner_id is not None:
            conditions.append(self._match("owner_id", owner_id))
        if status is not None:
            conditions.append(self._match("status", status.value))
        if not include_deleted:
            conditions.append(self._match("deleted", False))
        return models.Filter(must=conditions) if conditions else None

    async def list_subscriptions(
        self,
        owner_id: str | None = None,
        status: SubscriptionStatus | None = None,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Subscription], int]:
        """List subscriptions, newest first.

        Args:
            owner_id: Optional owner filter.
            status: Optional status filter.
            include_deleted: Include soft-deleted subscriptions.
            limit: Page size.
            offset: Items to skip.

        Returns:
            Tuple of (page of subscriptions, total matching).
        """
        query_filter = self._subscription_filter(owner_id, status, include_deleted)
        subscriptions = [
            self._payload_to_subscription(payload)
            async for payload in self._scroll_payloads(_KIND, query_filter)
        ]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions[offset : offset + limit], len(subscriptions)

    async def get_subscriptions_for_event(self, event_name: str) -> list[Subscription]:
        """Get active, non-deleted subscriptions listening to an event.

        A subscription with an empty event list listens to every event.
        """
        query_filter = self._subscription_filter(status=SubscriptionStatus.ACTIVE)
        subscriptions = [
            self._payload_to_subscription(payload)
            async for payload in self._scroll_payloads(_KIND, query_filter)
        ]
        matching = [s for s in subscriptions if s.is_active() and s.listens_to(event_name)]
        matching.sort(key=lambda s: s.created_at)
        return matching

    async def list_rotated_subscriptions(self) -> list[Subscription]:
        """Subscriptions that still keep a previous secret."""
        rotated: list[Subscription] = []
        async for payload in self._scroll_payloads(_KIND):
            subscription = self._payload_to_subscription(payload)
            if subscription.previous_secret is not None:
                rotated.append(subscription)
        return rotated

    async def update_subscription(
        self,
        subscription_id: str,
        **updates: Any,
    ) -> Subscription | None:
        """Apply field updates to a subscription.

        The merged record is validated as a whole, so updates that break a
        model invariant raise ``pydantic.ValidationError`` and nothing is
        written.

        Returns:
            Updated Subscription or None if not found.
        """
        async with self._lock_for(subscription_id):
            payload = await self._retrieve_payload(_KIND, subscription_id)
            if payload is None:
                return None
            current = self._payload_to_subscription(payload)
            merged = current.model_dump()
            merged.update(updates)
            merged["updated_at"] = utcnow()
            subscription = Subscription.model_validate(merged)
            await self._upsert_payload(
                _KIND, subscription_id, self._subscription_to_payload(subscription)
            )
            return subscription

    async def soft_delete_subscription(self, subscription_id: str) -> Subscription | None:
        """Mark a subscription deleted, keeping it and its delivery history."""
        now = utcnow()
        return await self.update_subscription(
            subscription_id,
            deleted_at=now,
            status=SubscriptionStatus.INACTIVE,
        )

    async def _increment_counter(
        self, subscription_id: str, counter: str, at: datetime | None = None
    ) -> int | None:
        """Increment a counter and stamp its timestamp as one serialized step.

        Returns:
            The new counter value, or None if the subscription is missing.
        """
        at = at or utcnow()
        async with self._lock_for(subscription_id):
            payload = await self._retrieve_payload(_KIND, subscription_id)
            if payload is None:
                return None
            value = int(payload.get(counter, 0)) + 1
            await self._set_payload(
                _KIND,
                subscription_id,
                {
                    counter: value,
                    _COUNTER_TIMESTAMPS[counter]: at.isoformat(),
                    "updated_at": at.isoformat(),
                },
            )
            return value

    async def increment_success(
        self, subscription_id: str, at: datetime | None = None
    ) -> int | None:
        """Count a successful delivery and stamp last_success_at."""
        return await self._increment_counter(subscription_id, "success_count", at)

    async def increment_failure(
        self, subscription_id: str, at: datetime | None = None
    ) -> int | None:
        """Count a permanently failed delivery and stamp last_failure_at."""
        return await self._increment_counter(subscription_id, "failure_count", at)

    async def touch_last_triggered(self, subscription_id: str, at: datetime | None = None) -> None:
        """Stamp last_triggered_at when a delivery attempt starts."""
        at = at or utcnow()
        async with self._lock_for(subscription_id):
            if await self._retrieve_payload(_KIND, subscription_id) is None:
                return
            await self._set_payload(
                _KIND, subscription_id, {"last_triggered_at": at.isoformat()}
            )

