"""Data models for Hookline.

Persisted Models:
    - Subscription: Registered endpoint, secrets, event filter, counters
    - DeliveryRecord: One event's delivery attempts to one subscription

Domain Events:
    - UserCreated, UserUpdated, UserDeleted, UserRestored
    - UserLoggedIn, UserLoggedOut
    - RoleAssigned, RoleRemoved, PermissionGranted, PermissionRevoked
    - WebhookPayload: The {event, timestamp, data} body built from an event
"""

from .base import generate_id, generate_secret, utcnow
from .delivery import CLAIMABLE_STATUSES, DeliveryRecord, DeliveryStatus
from .events import (
    DomainEvent,
    DomainEventBase,
    FileUploaded,
    PermissionGranted,
    PermissionRef,
    PermissionRevoked,
    RoleAssigned,
    RoleRef,
    RoleRemoved,
    UserCreated,
    UserDeleted,
    UserLoggedIn,
    UserLoggedOut,
    UserRef,
    UserRestored,
    UserUpdated,
    WebhookPayload,
    parse_domain_event,
)
from .subscription import Subscription, SubscriptionStatus

__all__ = [
    # Helpers
    "generate_id",
    "generate_secret",
    "utcnow",
    # Persisted
    "Subscription",
    "SubscriptionStatus",
    "DeliveryRecord",
    "DeliveryStatus",
    "CLAIMABLE_STATUSES",
    # Events
    "DomainEvent",
    "DomainEventBase",
    "FileUploaded",
    "PermissionGranted",
    "PermissionRef",
    "PermissionRevoked",
    "RoleAssigned",
    "RoleRef",
    "RoleRemoved",
    "UserCreated",
    "UserDeleted",
    "UserLoggedIn",
    "UserLoggedOut",
    "UserRef",
    "UserRestored",
    "UserUpdated",
    "WebhookPayload",
    "parse_domain_event",
]
