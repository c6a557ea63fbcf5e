"""HMAC-SHA256 request signing with a secret-rotation grace period.

Signing string:

    "{timestamp}.{raw_body}"

where ``timestamp`` is the Unix time sent in the timestamp header and
``raw_body`` is the exact JSON body of the request. The signature is the
lowercase hex HMAC-SHA256 digest of that string keyed by the subscription's
current secret.

Receivers should verify with ``verify_request``: the signature must match
the current secret, or the previous secret while its grace window is open,
and the timestamp must lie within the replay tolerance.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from hookline.exceptions import DeliveryError
from hookline.models import utcnow


def serialize_payload(payload: dict[str, Any]) -> str:
    """Compact JSON encoding used for the request body."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def signing_string(timestamp: int, body: str) -> bytes:
    return f"{timestamp}.{body}".encode()


def compute_signature(body: str, secret: str, timestamp: int) -> str:
    """Compute the hex HMAC-SHA256 signature for a request.

    Args:
        body: Raw JSON request body.
        secret: Signing secret.
        timestamp: Unix timestamp sent alongside the signature.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=signing_string(timestamp, body),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(body: str, secret: str, timestamp: int, signature: str) -> bool:
    """Check a signature against one secret in constant time."""
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret, timestamp)
    return hmac.compare_digest(expected, signature)


def is_timestamp_fresh(timestamp: int, tolerance_seconds: int, now: float | None = None) -> bool:
    """Whether a signed timestamp lies within the replay tolerance, in either direction."""
    current = time.time() if now is None else now
    return abs(current - timestamp) <= tolerance_seconds


def verify_with_rotation(
    body: str,
    timestamp: int,
    signature: str,
    current_secret: str,
    previous_secret: str | None = None,
    rotated_at: datetime | None = None,
    grace_period_days: int = 7,
    now: datetime | None = None,
) -> bool:
    """Verify against the current secret, falling back to the previous one.

    The previous secret is accepted only while
    ``rotated_at + grace_period_days > now``; outside that window it is
    rejected even when still stored.
    """
    if verify_signature(body, current_secret, timestamp, signature):
        return True
    if previous_secret is None or rotated_at is None:
        return False
    if (now or utcnow()) >= rotated_at + timedelta(days=grace_period_days):
        return False
    return verify_signature(body, previous_secret, timestamp, signature)


def verify_request(
    body: str,
    timestamp: int,
    signature: str,
    current_secret: str,
    previous_secret: str | None = None,
    rotated_at: datetime | None = None,
    grace_period_days: int = 7,
    tolerance_seconds: int = 300,
    now: datetime | None = None,
) -> bool:
    """Full receiver-side check: timestamp freshness plus signature."""
    current = now or utcnow()
    if not is_timestamp_fresh(timestamp, tolerance_seconds, now=current.timestamp()):
        return False
    return verify_with_rotation(
        body,
        timestamp,
        signature,
        current_secret,
        previous_secret=previous_secret,
        rotated_at=rotated_at,
        grace_period_days=grace_period_days,
        now=current,
    )


@dataclass
class SignedRequest:
    """A request body with the headers that sign it."""

    body: str
    timestamp: int
    signature: str
    headers: dict[str, str] = field(default_factory=dict)


def sign_payload(
    payload: dict[str, Any],
    secret: str,
    signature_header: str = "X-Webhook-Signature",
    timestamp_header: str = "X-Webhook-Timestamp",
    timestamp: int | None = None,
    extra_headers: dict[str, str] | None = None,
) -> SignedRequest:
    """Serialize a payload and sign it at send time.

    Signatures are never cached: a retry after a rotation is signed with
    the secret that is current when it is sent.

    Raises:
        DeliveryError: If the payload is not JSON serializable.
    """
    try:
        body = serialize_payload(payload)
    except (TypeError, ValueError) as e:
        raise DeliveryError(f"Payload cannot be encoded as JSON: {e}") from e
    ts = int(time.time()) if timestamp is None else timestamp
    signature = compute_signature(body, secret, ts)
    headers = {
        "Content-Type": "application/json",
        **(extra_headers or {}),
        signature_header: signature,
        timestamp_header: str(ts),
    }
    return SignedRequest(body=body, timestamp=ts, signature=signature, headers=headers)
