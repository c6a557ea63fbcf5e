"""Delivery record storage operations for Hookline.

Every state change goes through ``_transition``, which re-reads the record
under its lock and applies the change only if a guard accepts the current
state. The ``pending/failed -> processing`` claim is the mutual-exclusion
point between workers, and terminal records are rejected by every guard.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from hookline.models import DeliveryRecord, DeliveryStatus, utcnow

_KIND = "deliveries"


def _is_processing(record: DeliveryRecord) -> bool:
    return record.status == DeliveryStatus.PROCESSING and not record.is_terminal


class DeliveryMixin:
    """Mixin providing delivery record operations for HooklineStorage.

    Expects the same base helpers as SubscriptionMixin.
    """

    _upsert_payload: Any
    _retrieve_payload: Any
    _scroll_payloads: Any
    _lock_for: Any
    _match: Any
    _match_any: Any

    async def create_delivery(self, record: DeliveryRecord) -> str:
        """Persist a new delivery record.

        Returns:
            The delivery ID.
        """
        await self._upsert_payload(_KIND, record.id, record.model_dump(mode="json"))
        return record.id

    async def get_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        payload = await self._retrieve_payload(_KIND, delivery_id)
        if payload is None:
            return None
        return DeliveryRecord.model_validate(payload)

    async def list_deliveries(
        self,
        subscription_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DeliveryRecord], int]:
        """Delivery history of one subscription, newest first.

        Returns:
            Tuple of (page of records, total matching).
        """
        from qdrant_client import models

        conditions = [self._match("subscription_id", subscription_id)]
        if status is not None:
            conditions.append(self._match("status", status.value))

        records = [
            DeliveryRecord.model_validate(payload)
            async for payload in self._scroll_payloads(_KIND, models.Filter(must=conditions))
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset : offset + limit], len(records)

    async def list_open_deliveries(
        self,
        statuses: tuple[DeliveryStatus, ...] = (DeliveryStatus.PENDING, DeliveryStatus.FAILED),
    ) -> list[DeliveryRecord]:
        """Non-terminal records in the given statuses, oldest due first.

        Used to rebuild the in-memory schedule after a restart.
        """
        from qdrant_client import models

        query_filter = models.Filter(must=[self._match_any("status", [s.value for s in statuses])])
        records: list[DeliveryRecord] = []
        async for payload in self._scroll_payloads(_KIND, query_filter):
            record = DeliveryRecord.model_validate(payload)
            if not record.is_terminal:
                records.append(record)
        records.sort(key=lambda r: r.next_attempt_at or r.created_at)
        return records

    async def _transition(
        self,
        delivery_id: str,
        guard: Callable[[DeliveryRecord], bool],
        build: Callable[[DeliveryRecord], dict[str, Any]],
    ) -> DeliveryRecord | None:
        """Apply ``build(record)`` as field updates if ``guard(record)`` holds.

        Returns:
            The updated record, or None if the record is missing or the guard
            rejected its current state.
        """
        async with self._lock_for(delivery_id):
            payload = await self._retrieve_payload(_KIND, delivery_id)
            if payload is None:
                return None
            record = DeliveryRecord.model_validate(payload)
            if not guard(record):
                return None
            updates = build(record)
            updates["updated_at"] = utcnow()
            updated = record.model_copy(update=updates)
            await self._upsert_payload(_KIND, delivery_id, updated.model_dump(mode="json"))
            return updated

    async def claim_delivery(
        self, delivery_id: str, now: datetime | None = None
    ) -> DeliveryRecord | None:
        """Claim a pending or retry-waiting record and count the attempt.

        Returns:
            The claimed record (status processing, attempts + 1), or None if
            another worker holds it or it is already terminal.
        """
        now = now or utcnow()
        return await self._transition(
            delivery_id,
            guard=lambda r: r.is_claimable,
            build=lambda r: {
                "status": DeliveryStatus.PROCESSING,
                "attempts": r.attempts + 1,
                "claimed_at": now,
                "next_attempt_at": None,
            },
        )

    async def mark_delivered(
        self,
        delivery_id: str,
        response_code: int,
        response_body: str | None,
        now: datetime | None = None,
    ) -> DeliveryRecord | None:
        """Finalize a claimed record as success."""
        now = now or utcnow()
        return await self._transition(
            delivery_id,
            guard=_is_processing,
            build=lambda r: {
                "status": DeliveryStatus.SUCCESS,
                "response_code": response_code,
                "response_body": response_body,
                "error_message": None,
                "claimed_at": None,
                "delivered_at": now,
            },
        )

    async def mark_retry_scheduled(
        self,
        delivery_id: str,
        error_message: str,
        next_attempt_at: datetime,
        response_code: int | None = None,
        response_body: str | None = None,
    ) -> DeliveryRecord | None:
        """Record a failed attempt that will be retried at ``next_attempt_at``."""
        return await self._transition(
            delivery_id,
            guard=_is_processing,
            build=lambda r: {
                "status": DeliveryStatus.FAILED,
                "response_code": response_code,
                "response_body": response_body,
                "error_message": error_message,
                "claimed_at": None,
                "next_attempt_at": next_attempt_at,
            },
        )

    @staticmethod
    def _failure_updates(
        error_message: str,
        response_code: int | None,
        response_body: str | None,
        now: datetime,
    ) -> dict[str, Any]:
        # Response fields are only overwritten when given
        updates: dict[str, Any] = {
            "status": DeliveryStatus.FAILED,
            "error_message": error_message,
            "claimed_at": None,
            "next_attempt_at": None,
            "failed_at": now,
        }
        if response_code is not None:
            updates["response_code"] = response_code
        if response_body is not None:
            updates["response_body"] = response_body
        return updates

    async def mark_failed(
        self,
        delivery_id: str,
        error_message: str,
        response_code: int | None = None,
        response_body: str | None = None,
        now: datetime | None = None,
    ) -> DeliveryRecord | None:
        """Finalize a claimed record as permanently failed."""
        now = now or utcnow()
        updates = self._failure_updates(error_message, response_code, response_body, now)
        return await self._transition(
            delivery_id, guard=_is_processing, build=lambda r: updates
        )

    async def abandon_delivery(
        self,
        delivery_id: str,
        error_message: str,
        now: datetime | None = None,
    ) -> DeliveryRecord | None:
        """Finalize an unclaimed record as permanently failed without an attempt.

        Uses the same guard as ``claim_delivery``: a record another worker is
        processing is left alone. The record keeps the response of its last
        real attempt.

        Returns:
            The failed record, or None if it is missing, claimed or terminal.
        """
        now = now or utcnow()
        updates = self._failure_updates(error_message, None, None, now)
        return await self._transition(
            delivery_id, guard=lambda r: r.is_claimable, build=lambda r: updates
        )

    async def release_stale_claims(self, claimed_before: datetime) -> list[DeliveryRecord]:
        """Return abandoned ``processing`` records to ``pending``.

        A claim older than ``claimed_before`` belongs to a worker that
        crashed between claiming and persisting the outcome. The attempt it
        counted stays counted.

        Returns:
            The released records.
        """
        from qdrant_client import models

        query_filter = models.Filter(must=[self._match("status", DeliveryStatus.PROCESSING.value)])
        stale_ids = [
            payload["id"]
            async for payload in self._scroll_payloads(_KIND, query_filter)
            if payload.get("claimed_at") is not None
            and datetime.fromisoformat(payload["claimed_at"]) < claimed_before
        ]

        released: list[DeliveryRecord] = []
        for delivery_id in stale_ids:
            record = await self._transition(
                delivery_id,
                guard=lambda r: _is_processing(r)
                and r.claimed_at is not None
                and r.claimed_at < claimed_before,
                build=lambda r: {
                    "status": DeliveryStatus.PENDING,
                    "claimed_at": None,
                    "error_message": "claim released after worker timeout",
                },
            )
            if record is not None:
                released.append(record)
        return released
