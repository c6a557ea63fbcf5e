"""Hookline service layer.

Provides the high-level WebhookService for emitting events and
administering subscriptions.

Example:
    ```python
    from hookline.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription, secret = await hooks.create_subscription(
            name="Audit", url="https://audit.example.com/hooks"
        )
        deliveries, total = await hooks.list_deliveries(subscription.id)
    ```
"""

from .base import WebhookService
from .subscriptions import UPDATABLE_FIELDS

__all__ = [
    "UPDATABLE_FIELDS",
    "WebhookService",
]
