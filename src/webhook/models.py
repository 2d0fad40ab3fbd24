"""Data models for the Clerk webhook pipeline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ClerkEventType(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    SESSION_CREATED = "session.created"
    SESSION_ENDED = "session.ended"


@dataclass
class ClerkWebhookPayload:
    """A structurally valid Clerk webhook envelope."""

    type: str
    object: str
    data: Any

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ClerkWebhookPayload:
        return cls(type=payload["type"], object=payload["object"], data=payload["data"])

    @property
    def subject_id(self) -> str | None:
        if isinstance(self.data, dict):
            value = self.data.get("id")
            return str(value) if value is not None else None
        return None


@dataclass
class WebhookResponse:
    """Handler response for the webhook route."""

    body: dict[str, Any]
    status_code: int = 200


# Receives the event's ``data`` object and returns the local user id.
UserSyncHook = Callable[[dict[str, Any]], Awaitable[str]]
# Receives the Clerk user id of a deleted account.
UserRemovalHook = Callable[[str], Awaitable[None]]
