"""Shared test fixtures for notegate."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import SecurityEventLog
from src.config import GatewaySettings

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def mock_event_log() -> MagicMock:
    return MagicMock(spec=SecurityEventLog)


# --- Factory functions for test data ---


def make_settings(**kwargs: Any) -> GatewaySettings:
    """Factory for GatewaySettings with sensible defaults."""
    defaults: dict[str, Any] = {
        "upstream_url": "http://upstream.test",
        "environment": "test",
        "webhook_secret": WEBHOOK_SECRET,
        "rate_policies_path": "/nonexistent/rate-policies.json",
    }
    defaults.update(kwargs)
    return GatewaySettings(**defaults)


def make_clerk_event(event_type: str = "user.created", **data: Any) -> dict[str, Any]:
    """Factory for a Clerk webhook envelope."""
    return {
        "type": event_type,
        "object": "event",
        "data": {"id": "user_2abc", **data},
    }


def sign_body(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a clerk-signature header for ``body``."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(secret.encode(), ts.encode() + b"." + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def encode_event(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode()
