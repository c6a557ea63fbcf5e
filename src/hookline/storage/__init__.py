"""Storage backends for Hookline.

This module provides the storage layer for persisting subscriptions and
delivery records to Qdrant.

Example:
    ```python
    from hookline.storage import HooklineStorage

    async with HooklineStorage() as storage:
        await storage.create_delivery(record)
        claimed = await storage.claim_delivery(record.id)
    ```
"""

from .base import COLLECTION_NAMES
from .client import HooklineStorage

__all__ = [
    "HooklineStorage",
    "COLLECTION_NAMES",
]
