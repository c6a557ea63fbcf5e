"""Shared helpers for Hookline models."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from uuid import uuid4

# Random bytes in a generated signing secret (hex-encoded to twice the length)
SECRET_BYTES = 32


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("sub") -> "sub_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_secret() -> str:
    """Generate a new random signing secret."""
    return secrets.token_hex(SECRET_BYTES)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)
