"""FastAPI router for Hookline API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hookline import __version__
from hookline.models import DeliveryStatus, SubscriptionStatus
from hookline.service import WebhookService

from .schemas import (
    DeliveryListResponse,
    DeliveryResponse,
    EventListResponse,
    HealthResponse,
    RotateSecretRequest,
    RotateSecretResponse,
    SubscriptionCreatedResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]
Limit = Annotated[int, Query(ge=1, le=200)]
Offset = Annotated[int, Query(ge=0)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health.

    Reports storage connectivity and whether delivery workers are running.
    """
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)

    storage_connected = bool(_service.storage.is_initialized)
    queue_running = bool(getattr(_service.queue, "running", True))
    if storage_connected and queue_running:
        health = "healthy"
    elif storage_connected:
        health = "degraded"
    else:
        health = "unhealthy"
    return HealthResponse(
        status=health,
        version=__version__,
        storage_connected=storage_connected,
        queue_running=queue_running,
    )


@router.get("/events", response_model=EventListResponse, tags=["webhooks"])
async def list_events(service: ServiceDep) -> EventListResponse:
    """List webhook event names subscriptions may listen to."""
    return EventListResponse(events=service.available_events)


@router.post(
    "/webhooks",
    response_model=SubscriptionCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_subscription(
    request: SubscriptionCreateRequest,
    service: ServiceDep,
) -> SubscriptionCreatedResponse:
    """Register a webhook endpoint.

    The signing secret is returned in this response only.
    """
    subscription, secret = await service.create_subscription(
        name=request.name,
        url=request.url,
        subscribed_events=request.subscribed_events,
        owner_id=request.owner_id,
        status=request.status,
        timeout_seconds=request.timeout_seconds,
        max_retries=request.max_retries,
        secret=request.secret,
    )
    public = SubscriptionResponse.from_subscription(subscription)
    return SubscriptionCreatedResponse(**public.model_dump(), secret=secret)


@router.get("/webhooks", response_model=SubscriptionListResponse, tags=["webhooks"])
async def list_subscriptions(
    service: ServiceDep,
    owner_id: str | None = None,
    status_filter: Annotated[SubscriptionStatus | None, Query(alias="status")] = None,
    limit: Limit = 50,
    offset: Offset = 0,
) -> SubscriptionListResponse:
    subscriptions, total = await service.list_subscriptions(
        owner_id=owner_id, status=status_filter, limit=limit, offset=offset
    )
    return SubscriptionListResponse(
        items=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/webhooks/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def get_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    subscription = await service.get_subscription(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.patch(
    "/webhooks/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def update_subscription(
    subscription_id: str,
    request: SubscriptionUpdateRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Update a subscription. Only fields present in the body change."""
    changes = request.model_dump(exclude_unset=True)
    subscription = await service.update_subscription(subscription_id, **changes)
    return SubscriptionResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_subscription(subscription_id: str, service: ServiceDep) -> None:
    """Soft-delete a subscription. Its delivery history is kept."""
    await service.delete_subscription(subscription_id)


@router.post(
    "/webhooks/{subscription_id}/pause",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def pause_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    subscription = await service.pause_subscription(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/webhooks/{subscription_id}/resume",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def resume_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    subscription = await service.resume_subscription(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/webhooks/{subscription_id}/rotate-secret",
    response_model=RotateSecretResponse,
    tags=["webhooks"],
)
async def rotate_secret(
    subscription_id: str,
    service: ServiceDep,
    request: RotateSecretRequest | None = None,
) -> RotateSecretResponse:
    """Rotate the signing secret.

    The previous secret keeps verifying for the grace period. The new
    secret is returned in this response only.
    """
    grace = request.grace_period_days if request is not None else None
    result = await service.rotate_secret(subscription_id, grace_period_days=grace)
    return RotateSecretResponse(
        subscription_id=result.subscription_id,
        secret=result.new_secret,
        rotated_at=result.rotated_at,
        previous_secret_expires_at=result.previous_secret_expires_at,
        grace_period_days=result.grace_period_days,
    )


@router.get(
    "/webhooks/{subscription_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
)
async def list_deliveries(
    subscription_id: str,
    service: ServiceDep,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    limit: Limit = 50,
    offset: Offset = 0,
) -> DeliveryListResponse:
    records, total = await service.list_deliveries(
        subscription_id, status=status_filter, limit=limit, offset=offset
    )
    return DeliveryListResponse(
        items=[DeliveryResponse.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/webhooks/{subscription_id}/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    tags=["deliveries"],
)
async def get_delivery(
    subscription_id: str,
    delivery_id: str,
    service: ServiceDep,
) -> DeliveryResponse:
    record = await service.get_delivery(subscription_id, delivery_id)
    return DeliveryResponse.from_record(record)


@router.post(
    "/webhooks/{subscription_id}/deliveries/{delivery_id}/retry",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["deliveries"],
)
async def redeliver(
    subscription_id: str,
    delivery_id: str,
    service: ServiceDep,
) -> DeliveryResponse:
    """Queue a fresh delivery of a past event.

    Returns the new pending record; the original record is unchanged.
    """
    record = await service.redeliver(subscription_id, delivery_id)
    logger.info("Manual redelivery of %s queued as %s", delivery_id, record.id)
    return DeliveryResponse.from_record(record)
