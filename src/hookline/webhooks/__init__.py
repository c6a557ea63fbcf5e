"""Webhook delivery for Hookline.

This module provides the delivery pipeline:

- EventDispatcher: domain event -> one pending delivery per subscription
- DeliveryWorker: signed POST, retry with backoff, permanent failure
- InProcessDeliveryQueue: asyncio worker pool with delayed jobs
- SecretRotationManager: secret rotation with a grace period
- signing helpers for senders and receivers
"""

from .alerts import AlertSink, LogAlertSink
from .dispatcher import EventDispatcher
from .queue import DeliveryQueue, InProcessDeliveryQueue
from .rotation import RotationResult, SecretRotationManager
from .signing import (
    SignedRequest,
    compute_signature,
    is_timestamp_fresh,
    serialize_payload,
    sign_payload,
    verify_request,
    verify_signature,
    verify_with_rotation,
)
from .worker import DeliveryOutcome, DeliveryWorker

__all__ = [
    "AlertSink",
    "DeliveryOutcome",
    "DeliveryQueue",
    "DeliveryWorker",
    "EventDispatcher",
    "InProcessDeliveryQueue",
    "LogAlertSink",
    "RotationResult",
    "SecretRotationManager",
    "SignedRequest",
    "compute_signature",
    "is_timestamp_fresh",
    "serialize_payload",
    "sign_payload",
    "verify_request",
    "verify_signature",
    "verify_with_rotation",
]
