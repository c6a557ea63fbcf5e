"""Delivery worker: one attempt of one delivery record per invocation.

State machine:

    pending -> processing -> success
                          -> failed (retry scheduled, re-enqueued with backoff)
                          -> failed (terminal, failed_at set, alert raised)

The worker is invoked with a delivery ID only. It re-reads the record and
its subscription on every invocation, so pausing or deleting a subscription
takes effect on the next attempt, and each attempt is signed with the
secret that is current when it is sent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from hookline.config import Settings, settings as default_settings
from hookline.exceptions import DeliveryError
from hookline.logging import bind_context, unbind_context
from hookline.models import DeliveryRecord, Subscription, utcnow

from .alerts import AlertSink, LogAlertSink, Severity
from .signing import sign_payload

if TYPE_CHECKING:
    from hookline.storage import HooklineStorage

    from .queue import DeliveryQueue

logger = logging.getLogger(__name__)

SUBSCRIPTION_INACTIVE = "subscription inactive"
RETRIES_EXHAUSTED = "max retries exhausted"

_CONTEXT_KEYS = ("delivery_id", "subscription_id", "event")


class DeliveryOutcome(str, Enum):
    """What one worker invocation did with a delivery record."""

    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


class DeliveryWorker:
    """Performs delivery attempts and drives records through their states.

    Example:
        ```python
        worker = DeliveryWorker(storage, queue, alerts=LogAlertSink())
        await queue.start(worker.process)
        await worker.recover()
        ```
    """

    def __init__(
        self,
        storage: HooklineStorage,
        queue: DeliveryQueue,
        settings: Settings | None = None,
        alerts: AlertSink | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            storage: Storage holding subscriptions and delivery records.
            queue: Queue that retries are re-enqueued on.
            settings: Delivery, retry and signing settings.
            alerts: Sink notified of permanent failures.
            client: Shared HTTP client. One is created on first use and
                closed by ``close()`` when not given.
        """
        self._storage = storage
        self._queue = queue
        self._settings = settings or default_settings
        self._alerts = alerts or LogAlertSink()
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def process(self, delivery_id: str) -> DeliveryOutcome:
        """Run one invocation for a queued delivery ID.

        Log records emitted during the invocation carry ``delivery_id``,
        ``subscription_id`` and ``event`` as context.

        Returns:
            The outcome of this invocation. Data errors (missing record or
            subscription) and lost claims return SKIPPED.
        """
        bind_context(delivery_id=delivery_id)
        try:
            return await self._process(delivery_id)
        finally:
            unbind_context(*_CONTEXT_KEYS)

    async def _process(self, delivery_id: str) -> DeliveryOutcome:
        record = await self._storage.get_delivery(delivery_id)
        if record is None:
            logger.warning("Delivery %s not found, dropping job", delivery_id)
            return DeliveryOutcome.SKIPPED
        bind_context(subscription_id=record.subscription_id, event=record.event_name)
        if record.is_terminal:
            logger.debug("Delivery %s already %s, nothing to do", delivery_id, record.status.value)
            return DeliveryOutcome.SKIPPED

        subscription = await self._storage.get_subscription(record.subscription_id)
        if subscription is None:
            logger.error(
                "Subscription %s of delivery %s not found, dropping job",
                record.subscription_id,
                delivery_id,
            )
            return DeliveryOutcome.SKIPPED

        if not subscription.is_active():
            return await self._fail_permanently(
                record,
                subscription,
                SUBSCRIPTION_INACTIVE,
                severity="warning",
                count=False,
                claimed=False,
            )

        max_retries = subscription.effective_max_retries(self._settings.retry.max_retries)
        if record.attempts >= max_retries:
            return await self._fail_permanently(
                record, subscription, RETRIES_EXHAUSTED, claimed=False
            )

        claimed = await self._storage.claim_delivery(delivery_id)
        if claimed is None:
            logger.debug("Delivery %s claimed elsewhere, skipping", delivery_id)
            return DeliveryOutcome.SKIPPED

        await self._storage.touch_last_triggered(subscription.id)
        return await self._attempt(claimed, subscription, max_retries)

    async def _attempt(
        self,
        record: DeliveryRecord,
        subscription: Subscription,
        max_retries: int,
    ) -> DeliveryOutcome:
        signing = self._settings.signing
        try:
            request = sign_payload(
                record.payload,
                subscription.current_secret,
                signature_header=signing.signature_header,
                timestamp_header=signing.timestamp_header,
                extra_headers={
                    "User-Agent": self._settings.user_agent,
                    "X-Webhook-Id": subscription.id,
                    "X-Webhook-Event": record.event_name,
                    "X-Webhook-Delivery-Id": record.id,
                },
            )
        except DeliveryError as e:
            # A stored payload that cannot be encoded never will be
            return await self._fail_permanently(record, subscription, e.message)
        timeout = subscription.effective_timeout(self._settings.delivery_timeout_seconds)

        response_code: int | None = None
        response_body: str | None = None
        try:
            response = await self._http().post(
                str(subscription.url),
                content=request.body.encode("utf-8"),
                headers=request.headers,
                timeout=timeout,
            )
            response_code = response.status_code
            response_body = self._truncate(response.text)
        except httpx.TimeoutException:
            error = f"Request timed out after {timeout:g}s"
        except httpx.RequestError as e:
            error = f"Request error: {e}"
        else:
            if response.is_success:
                return await self._succeed(
                    record, subscription, response.status_code, response_body
                )
            error = f"HTTP {response_code}"

        if record.attempts < max_retries:
            return await self._schedule_retry(record, error, response_code, response_body)
        return await self._fail_permanently(
            record,
            subscription,
            f"{RETRIES_EXHAUSTED}: {error}",
            response_code=response_code,
            response_body=response_body,
        )

    async def _succeed(
        self,
        record: DeliveryRecord,
        subscription: Subscription,
        response_code: int,
        response_body: str | None,
    ) -> DeliveryOutcome:
        now = utcnow()
        updated = await self._storage.mark_delivered(
            record.id, response_code, response_body, now=now
        )
        if updated is None:
            logger.warning(
                "Delivery %s changed state during attempt, success not recorded", record.id
            )
            return DeliveryOutcome.SKIPPED
        await self._storage.increment_success(subscription.id, at=now)
        logger.info(
            "Delivered %s to %s (status %d, attempt %d)",
            record.event_name,
            subscription.url,
            response_code,
            record.attempts,
        )
        return DeliveryOutcome.DELIVERED

    async def _schedule_retry(
        self,
        record: DeliveryRecord,
        error: str,
        response_code: int | None,
        response_body: str | None,
    ) -> DeliveryOutcome:
        delay = self._settings.retry.delay_for(record.attempts)
        next_attempt_at = utcnow() + timedelta(seconds=delay)
        updated = await self._storage.mark_retry_scheduled(
            record.id,
            error,
            next_attempt_at,
            response_code=response_code,
            response_body=response_body,
        )
        if updated is None:
            logger.warning("Delivery %s changed state during attempt, not rescheduling", record.id)
            return DeliveryOutcome.SKIPPED

        await self._queue.enqueue(record.id, delay_seconds=delay)
        logger.info(
            "Delivery %s attempt %d failed (%s), retrying in %.0fs",
            record.id,
            record.attempts,
            error,
            delay,
        )
        return DeliveryOutcome.RETRY_SCHEDULED

    async def _fail_permanently(
        self,
        record: DeliveryRecord,
        subscription: Subscription,
        reason: str,
        response_code: int | None = None,
        response_body: str | None = None,
        severity: Severity = "critical",
        count: bool = True,
        claimed: bool = True,
    ) -> DeliveryOutcome:
        """Finalize ``record`` as failed, then count it and raise an alert.

        A record this invocation has not claimed is only finalized when no
        other worker holds it.
        """
        now = utcnow()
        if claimed:
            updated = await self._storage.mark_failed(
                record.id,
                reason,
                response_code=response_code,
                response_body=response_body,
                now=now,
            )
        else:
            updated = await self._storage.abandon_delivery(record.id, reason, now=now)
        if updated is None:
            logger.debug("Delivery %s is claimed elsewhere or already finalized", record.id)
            return DeliveryOutcome.SKIPPED
        if count:
            await self._storage.increment_failure(subscription.id, at=now)

        logger.warning(
            "Delivery %s of %s to %s failed permanently after %d attempts: %s",
            record.id,
            record.event_name,
            subscription.url,
            updated.attempts,
            reason,
        )
        await self._alerts.alert(
            severity,
            f"Webhook delivery failed permanently: {reason}",
            delivery_id=record.id,
            subscription_id=subscription.id,
            event=record.event_name,
            url=str(subscription.url),
            attempts=updated.attempts,
        )
        return DeliveryOutcome.FAILED

    def _truncate(self, text: str | None) -> str | None:
        if not text:
            return None
        return text[: self._settings.response_body_limit]

    async def recover(self, now: datetime | None = None) -> int:
        """Rebuild the queue from storage after a restart.

        Releases ``processing`` claims older than ``stale_claim_seconds``,
        then enqueues every open record with whatever is left of its delay.

        Returns:
            Number of records enqueued.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self._settings.stale_claim_seconds)
        released = await self._storage.release_stale_claims(cutoff)
        if released:
            logger.warning("Released %d stale delivery claims", len(released))

        enqueued = 0
        for record in await self._storage.list_open_deliveries():
            delay = 0.0
            if record.next_attempt_at is not None:
                delay = max((record.next_attempt_at - now).total_seconds(), 0.0)
            await self._queue.enqueue(record.id, delay_seconds=delay)
            enqueued += 1

        if enqueued:
            logger.info("Recovered %d open deliveries", enqueued)
        return enqueued


__all__ = [
    "DeliveryOutcome",
    "DeliveryWorker",
    "RETRIES_EXHAUSTED",
    "SUBSCRIPTION_INACTIVE",
]
