"""Domain events and the webhook payloads built from them.

Domain events form a tagged union keyed by ``type``. Each variant projects
itself to the minimal ``data`` object sent to subscribers, so unrelated
fields of the source entities never leak into a webhook.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .base import utcnow


class UserRef(BaseModel):
    """Public identity of a user as exposed to webhook consumers."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str


class RoleRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    display_name: str | None = None


class PermissionRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    display_name: str | None = None


class DomainEventBase(BaseModel):
    """Common fields of all domain events."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    occurred_at: datetime = Field(default_factory=utcnow)

    def webhook_data(self) -> dict[str, Any]:
        """Type-specific ``data`` object for the webhook payload."""
        return {}


class _UserEvent(DomainEventBase):
    user: UserRef

    def webhook_data(self) -> dict[str, Any]:
        return {"user": self.user.model_dump()}


class _SessionEvent(_UserEvent):
    ip_address: str | None = None
    user_agent: str | None = None

    def webhook_data(self) -> dict[str, Any]:
        return {
            "user": self.user.model_dump(),
            "ip": self.ip_address,
            "user_agent": self.user_agent,
        }


class _RoleEvent(_UserEvent):
    role: RoleRef

    def webhook_data(self) -> dict[str, Any]:
        return {"user": self.user.model_dump(), "role": self.role.model_dump()}


class _PermissionEvent(_UserEvent):
    permission: PermissionRef

    def webhook_data(self) -> dict[str, Any]:
        return {"user": self.user.model_dump(), "permission": self.permission.model_dump()}


class UserCreated(_UserEvent):
    type: Literal["user_created"] = "user_created"


class UserUpdated(_UserEvent):
    type: Literal["user_updated"] = "user_updated"


class UserDeleted(_UserEvent):
    type: Literal["user_deleted"] = "user_deleted"


class UserRestored(_UserEvent):
    type: Literal["user_restored"] = "user_restored"


class UserLoggedIn(_SessionEvent):
    type: Literal["user_logged_in"] = "user_logged_in"


class UserLoggedOut(_SessionEvent):
    type: Literal["user_logged_out"] = "user_logged_out"


class RoleAssigned(_RoleEvent):
    type: Literal["role_assigned"] = "role_assigned"


class RoleRemoved(_RoleEvent):
    type: Literal["role_removed"] = "role_removed"


class PermissionGranted(_PermissionEvent):
    type: Literal["permission_granted"] = "permission_granted"


class PermissionRevoked(_PermissionEvent):
    type: Literal["permission_revoked"] = "permission_revoked"


class FileUploaded(DomainEventBase):
    """Raised by the upload pipeline. Not mapped to a webhook by default."""

    type: Literal["file_uploaded"] = "file_uploaded"
    file_id: str
    uploaded_by: str | None = None

    def webhook_data(self) -> dict[str, Any]:
        return {"file": {"id": self.file_id}}


DomainEvent = Annotated[
    UserCreated
    | UserUpdated
    | UserDeleted
    | UserRestored
    | UserLoggedIn
    | UserLoggedOut
    | RoleAssigned
    | RoleRemoved
    | PermissionGranted
    | PermissionRevoked
    | FileUploaded,
    Field(discriminator="type"),
]

_domain_event_adapter: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)


def parse_domain_event(data: dict[str, Any]) -> DomainEvent:
    """Build the matching domain event variant from its ``type`` tag."""
    return _domain_event_adapter.validate_python(data)


class WebhookPayload(BaseModel):
    """Body sent to subscriber endpoints.

    Attributes:
        event: Webhook event name (e.g. "user.created").
        timestamp: When the payload was built.
        data: Type-specific projection of the domain event.
    """

    model_config = ConfigDict(extra="forbid")

    event: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event_name: str, event: DomainEventBase) -> "WebhookPayload":
        return cls(event=event_name, data=event.webhook_data())

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready dict stored on the delivery record and sent verbatim."""
        return self.model_dump(mode="json")


__all__ = [
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
