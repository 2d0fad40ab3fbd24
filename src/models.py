"""Shared Pydantic data models for notegate."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class RouteClass(str, Enum):
    AI = "ai"
    NOTES = "notes"
    AUTH = "auth"
    API = "api"
    WEBHOOK = "webhook"
    UNCLASSIFIED = "unclassified"


class SecurityEventType(str, Enum):
    RATE_LIMITED = "rate_limited"
    IDENTITY_FALLBACK = "identity_fallback"
    WEBHOOK_ACCEPTED = "webhook_accepted"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_MISCONFIGURED = "webhook_misconfigured"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Rate Limiting Models ---


class RatePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    window_ms: int = Field(gt=0)
    max_requests: int = Field(ge=1)


class RateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: int = Field(ge=0)
    reset_at: int  # epoch milliseconds


class RequestMetadata(BaseModel):
    """The read-only slice of an HTTP request the gateway decides on."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    headers: dict[str, str] = Field(default_factory=dict)  # lower-cased names
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


# --- Security Event Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SecurityEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: SecurityEventType
    identifier: str | None = None
    action: str
    result: str  # "allowed" | "blocked" | "rejected" | "degraded"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
