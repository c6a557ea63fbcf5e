"""Unit tests for the delivery worker state machine.

HTTP calls go through httpx.MockTransport; storage is the in-memory
Qdrant instance from conftest.
"""

import asyncio
from datetime import timedelta

import httpx
import pytest
import structlog

from factories import SECRET, make_delivery, make_subscription
from hookline.models import DeliveryStatus, SubscriptionStatus, utcnow
from hookline.webhooks import (
    DeliveryOutcome,
    DeliveryWorker,
    SecretRotationManager,
    verify_signature,
)


class Endpoint:
    """Scripted receiver: replies with the queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
async def make_worker(storage, queue, settings, alerts):
    clients: list[httpx.AsyncClient] = []

    def build(endpoint: Endpoint) -> DeliveryWorker:
        client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        clients.append(client)
        return DeliveryWorker(storage, queue, settings, alerts=alerts, client=client)

    yield build

    for client in clients:
        await client.aclose()


async def _seed(storage, **subscription_fields):
    subscription = make_subscription(**subscription_fields)
    await storage.store_subscription(subscription)
    record = make_delivery(subscription.id)
    await storage.create_delivery(record)
    return subscription, record


class TestSuccessfulDelivery:
    """Tests for the success path."""

    async def test_delivers_signed_request(self, storage, make_worker):
        subscription, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(200, text="ok"))
        worker = make_worker(endpoint)

        outcome = await worker.process(record.id)

        assert outcome == DeliveryOutcome.DELIVERED
        request = endpoint.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://example.com/hooks"
        body = request.content.decode()
        timestamp = int(request.headers["X-Webhook-Timestamp"])
        assert verify_signature(body, SECRET, timestamp, request.headers["X-Webhook-Signature"])
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "Hookline-Webhook/1.0"
        assert request.headers["X-Webhook-Id"] == subscription.id
        assert request.headers["X-Webhook-Event"] == "user.created"
        assert request.headers["X-Webhook-Delivery-Id"] == record.id

        done = await storage.get_delivery(record.id)
        assert done.status == DeliveryStatus.SUCCESS
        assert done.attempts == 1
        assert done.response_code == 200
        assert done.response_body == "ok"
        assert done.delivered_at is not None

        loaded = await storage.get_subscription(subscription.id)
        assert loaded.success_count == 1
        assert loaded.last_success_at is not None
        assert loaded.last_triggered_at is not None

    async def test_body_is_stored_payload(self, storage, make_worker):
        _, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(204))
        await make_worker(endpoint).process(record.id)

        assert endpoint.requests[0].content == (
            b'{"event":"user.created","timestamp":"2025-01-01T00:00:00Z",'
            b'"data":{"user":{"id":"usr_1","name":"Ada Lovelace","email":"ada@example.com"}}}'
        )

    async def test_response_body_truncated(self, storage, make_worker, settings):
        settings.response_body_limit = 10
        _, record = await _seed(storage)

        await make_worker(Endpoint(httpx.Response(200, text="x" * 50))).process(record.id)

        assert (await storage.get_delivery(record.id)).response_body == "x" * 10

    async def test_signed_with_rotated_secret(self, storage, make_worker, settings):
        """After a rotation the next attempt uses the new secret."""
        subscription, record = await _seed(storage)
        rotation = await SecretRotationManager(storage, settings).rotate(subscription.id)
        endpoint = Endpoint(httpx.Response(200))

        await make_worker(endpoint).process(record.id)

        request = endpoint.requests[0]
        body = request.content.decode()
        timestamp = int(request.headers["X-Webhook-Timestamp"])
        signature = request.headers["X-Webhook-Signature"]
        assert verify_signature(body, rotation.new_secret, timestamp, signature)
        assert not verify_signature(body, SECRET, timestamp, signature)


class TestRetries:
    """Tests for failed attempts and backoff."""

    async def test_three_server_errors_exhaust_retries(
        self, storage, queue, alerts, make_worker
    ):
        subscription, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(500, text="boom"))
        worker = make_worker(endpoint)

        assert await worker.process(record.id) == DeliveryOutcome.RETRY_SCHEDULED
        waiting = await storage.get_delivery(record.id)
        assert waiting.status == DeliveryStatus.FAILED
        assert waiting.failed_at is None
        assert waiting.error_message == "HTTP 500"
        assert waiting.next_attempt_at is not None

        assert await worker.process(record.id) == DeliveryOutcome.RETRY_SCHEDULED
        assert await worker.process(record.id) == DeliveryOutcome.FAILED

        assert len(endpoint.requests) == 3
        assert queue.jobs == [(record.id, 60.0), (record.id, 120.0)]

        failed = await storage.get_delivery(record.id)
        assert failed.attempts == 3
        assert failed.failed_at is not None
        assert failed.response_code == 500
        assert failed.error_message == "max retries exhausted: HTTP 500"

        loaded = await storage.get_subscription(subscription.id)
        assert loaded.failure_count == 1
        assert loaded.success_count == 0

        alerts.alert.assert_awaited_once()
        severity, message = alerts.alert.await_args.args
        assert severity == "critical"
        assert "max retries exhausted" in message
        assert alerts.alert.await_args.kwargs["delivery_id"] == record.id
        assert alerts.alert.await_args.kwargs["attempts"] == 3

    async def test_recovers_after_failure(self, storage, make_worker):
        subscription, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(503), httpx.Response(200))
        worker = make_worker(endpoint)

        await worker.process(record.id)
        assert await worker.process(record.id) == DeliveryOutcome.DELIVERED

        done = await storage.get_delivery(record.id)
        assert done.attempts == 2
        assert done.error_message is None
        assert (await storage.get_subscription(subscription.id)).success_count == 1

    async def test_timeout_schedules_retry(self, storage, queue, make_worker):
        _, record = await _seed(storage)
        endpoint = Endpoint(httpx.ReadTimeout("timed out"))

        outcome = await make_worker(endpoint).process(record.id)

        assert outcome == DeliveryOutcome.RETRY_SCHEDULED
        waiting = await storage.get_delivery(record.id)
        assert waiting.error_message == "Request timed out after 30s"
        assert waiting.response_code is None
        assert queue.jobs == [(record.id, 60.0)]

    async def test_connection_error_schedules_retry(self, storage, make_worker):
        _, record = await _seed(storage)
        endpoint = Endpoint(httpx.ConnectError("connection refused"))

        await make_worker(endpoint).process(record.id)

        waiting = await storage.get_delivery(record.id)
        assert waiting.error_message.startswith("Request error:")

    async def test_client_error_is_retried(self, storage, queue, make_worker):
        _, record = await _seed(storage)

        outcome = await make_worker(Endpoint(httpx.Response(404))).process(record.id)

        assert outcome == DeliveryOutcome.RETRY_SCHEDULED
        assert (await storage.get_delivery(record.id)).error_message == "HTTP 404"

    async def test_subscription_override_of_max_retries(self, storage, queue, make_worker):
        _, record = await _seed(storage, max_retries=1)

        outcome = await make_worker(Endpoint(httpx.Response(500))).process(record.id)

        assert outcome == DeliveryOutcome.FAILED
        assert queue.jobs == []

    async def test_subscription_timeout_override(self, storage, make_worker):
        _, record = await _seed(storage, timeout_seconds=5)

        await make_worker(Endpoint(httpx.ReadTimeout("slow"))).process(record.id)

        waiting = await storage.get_delivery(record.id)
        assert waiting.error_message == "Request timed out after 5s"

    async def test_exhausted_record_fails_without_request(self, storage, alerts, make_worker):
        _, record = await _seed(storage)
        await storage.create_delivery(
            record.model_copy(update={"status": DeliveryStatus.FAILED, "attempts": 3})
        )
        endpoint = Endpoint(httpx.Response(200))

        outcome = await make_worker(endpoint).process(record.id)

        assert outcome == DeliveryOutcome.FAILED
        assert endpoint.requests == []
        assert (await storage.get_delivery(record.id)).error_message == "max retries exhausted"


class TestInactiveSubscription:
    """Pausing or deleting a subscription stops its deliveries."""

    async def test_paused_mid_retry(self, storage, queue, alerts, make_worker):
        subscription, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(500, text="down"))
        worker = make_worker(endpoint)
        await worker.process(record.id)

        await storage.update_subscription(subscription.id, status=SubscriptionStatus.PAUSED)
        outcome = await worker.process(record.id)

        assert outcome == DeliveryOutcome.FAILED
        assert len(endpoint.requests) == 1
        failed = await storage.get_delivery(record.id)
        assert failed.error_message == "subscription inactive"
        assert failed.failed_at is not None
        assert failed.attempts == 1
        assert failed.response_code == 500

        assert (await storage.get_subscription(subscription.id)).failure_count == 0
        assert alerts.alert.await_args.args[0] == "warning"

    async def test_deleted_subscription(self, storage, make_worker):
        subscription, record = await _seed(storage)
        await storage.soft_delete_subscription(subscription.id)
        endpoint = Endpoint(httpx.Response(200))

        assert await make_worker(endpoint).process(record.id) == DeliveryOutcome.FAILED
        assert endpoint.requests == []


class TestSkippedJobs:
    """Jobs that refer to nothing deliverable are dropped."""

    async def test_missing_record(self, make_worker, alerts):
        outcome = await make_worker(Endpoint(httpx.Response(200))).process("dlv_missing")
        assert outcome == DeliveryOutcome.SKIPPED
        alerts.alert.assert_not_awaited()

    async def test_missing_subscription(self, storage, make_worker):
        record = make_delivery("sub_gone")
        await storage.create_delivery(record)
        endpoint = Endpoint(httpx.Response(200))

        assert await make_worker(endpoint).process(record.id) == DeliveryOutcome.SKIPPED
        assert endpoint.requests == []
        assert (await storage.get_delivery(record.id)).status == DeliveryStatus.PENDING

    async def test_terminal_record(self, storage, make_worker):
        _, record = await _seed(storage)
        endpoint = Endpoint(httpx.Response(200))
        worker = make_worker(endpoint)
        await worker.process(record.id)

        assert await worker.process(record.id) == DeliveryOutcome.SKIPPED
        assert len(endpoint.requests) == 1

    async def test_record_claimed_elsewhere(self, storage, make_worker):
        _, record = await _seed(storage)
        await storage.claim_delivery(record.id)
        endpoint = Endpoint(httpx.Response(200))

        assert await make_worker(endpoint).process(record.id) == DeliveryOutcome.SKIPPED
        assert endpoint.requests == []


class GatedEndpoint:
    """Receiver that holds each request until ``release()`` is called."""

    def __init__(self):
        self.arrived = asyncio.Event()
        self.gate = asyncio.Event()
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.arrived.set()
        await self.gate.wait()
        return httpx.Response(200, text="ok")

    def release(self):
        self.gate.set()


class TestDuplicateJobs:
    """A second job for a record that is mid-attempt leaves it to its owner."""

    async def _start_last_attempt(self, storage, worker):
        subscription = make_subscription()
        await storage.store_subscription(subscription)
        record = make_delivery(subscription.id, status=DeliveryStatus.FAILED, attempts=2)
        await storage.create_delivery(record)
        first = asyncio.create_task(worker.process(record.id))
        return subscription, record, first

    async def test_exhausted_check_skips_in_flight_record(self, storage, alerts, make_worker):
        endpoint = GatedEndpoint()
        worker = make_worker(endpoint)
        subscription, record, first = await self._start_last_attempt(storage, worker)
        await asyncio.wait_for(endpoint.arrived.wait(), timeout=2)

        assert (await storage.get_delivery(record.id)).attempts == 3
        assert await worker.process(record.id) == DeliveryOutcome.SKIPPED
        in_flight = await storage.get_delivery(record.id)
        assert in_flight.status == DeliveryStatus.PROCESSING
        assert in_flight.failed_at is None
        alerts.alert.assert_not_awaited()

        endpoint.release()
        assert await first == DeliveryOutcome.DELIVERED

        done = await storage.get_delivery(record.id)
        assert done.status == DeliveryStatus.SUCCESS
        assert done.error_message is None
        loaded = await storage.get_subscription(subscription.id)
        assert loaded.success_count == 1
        assert loaded.failure_count == 0
        assert len(endpoint.requests) == 1

    async def test_inactive_check_skips_in_flight_record(self, storage, alerts, make_worker):
        endpoint = GatedEndpoint()
        worker = make_worker(endpoint)
        subscription, record, first = await self._start_last_attempt(storage, worker)
        await asyncio.wait_for(endpoint.arrived.wait(), timeout=2)

        await storage.update_subscription(subscription.id, status=SubscriptionStatus.PAUSED)
        assert await worker.process(record.id) == DeliveryOutcome.SKIPPED
        alerts.alert.assert_not_awaited()

        endpoint.release()
        assert await first == DeliveryOutcome.DELIVERED
        assert (await storage.get_delivery(record.id)).status == DeliveryStatus.SUCCESS

    async def test_success_not_counted_when_record_was_finalized(
        self, storage, alerts, make_worker
    ):
        endpoint = GatedEndpoint()
        worker = make_worker(endpoint)
        subscription, record, first = await self._start_last_attempt(storage, worker)
        await asyncio.wait_for(endpoint.arrived.wait(), timeout=2)

        # another owner finalizes the claim while the request is outstanding
        await storage.mark_failed(record.id, "HTTP 500")
        endpoint.release()

        assert await first == DeliveryOutcome.SKIPPED
        assert (await storage.get_subscription(subscription.id)).success_count == 0
        assert (await storage.get_delivery(record.id)).status == DeliveryStatus.FAILED


class TestLogContext:
    """Each invocation binds the delivery it works on to the log context."""

    async def test_context_bound_during_attempt(self, storage, make_worker):
        subscription, record = await _seed(storage)
        seen: dict = {}

        def endpoint(request: httpx.Request) -> httpx.Response:
            seen.update(structlog.contextvars.get_contextvars())
            return httpx.Response(200)

        await make_worker(endpoint).process(record.id)

        assert seen["delivery_id"] == record.id
        assert seen["subscription_id"] == subscription.id
        assert seen["event"] == "user.created"
        remaining = structlog.contextvars.get_contextvars()
        assert not {"delivery_id", "subscription_id", "event"} & remaining.keys()

    async def test_context_cleared_after_skip(self, make_worker):
        await make_worker(Endpoint(httpx.Response(200))).process("dlv_missing")
        assert "delivery_id" not in structlog.contextvars.get_contextvars()


class TestRecover:
    """Tests for rebuilding the queue after a restart."""

    async def test_enqueues_open_records_with_remaining_delay(
        self, storage, queue, make_worker
    ):
        now = utcnow()
        pending = make_delivery("sub_1")
        due_later = make_delivery(
            "sub_1",
            status=DeliveryStatus.FAILED,
            attempts=1,
            next_attempt_at=now + timedelta(seconds=90),
        )
        overdue = make_delivery(
            "sub_1",
            status=DeliveryStatus.FAILED,
            attempts=1,
            next_attempt_at=now - timedelta(seconds=30),
        )
        done = make_delivery("sub_1", status=DeliveryStatus.SUCCESS, delivered_at=now)
        for r in (pending, due_later, overdue, done):
            await storage.create_delivery(r)

        count = await make_worker(Endpoint(httpx.Response(200))).recover(now=now)

        assert count == 3
        delays = dict(queue.jobs)
        assert delays[pending.id] == 0.0
        assert delays[overdue.id] == 0.0
        assert delays[due_later.id] == pytest.approx(90.0)
        assert done.id not in delays

    async def test_releases_stale_claims(self, storage, queue, make_worker):
        now = utcnow()
        stale = make_delivery(
            "sub_1",
            status=DeliveryStatus.PROCESSING,
            attempts=1,
            claimed_at=now - timedelta(minutes=30),
        )
        await storage.create_delivery(stale)

        await make_worker(Endpoint(httpx.Response(200))).recover(now=now)

        assert (await storage.get_delivery(stale.id)).status == DeliveryStatus.PENDING
        assert queue.ids == [stale.id]
