"""Clerk webhook authenticity and freshness checks.

Clerk signs ``"<timestamp>.<raw body>"`` with HMAC-SHA256 and sends
``clerk-signature: t=<unix seconds>,v1=<hex digest>``. The digest covers the
exact bytes received, so the body must not be re-serialized before
verification.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class WebhookRejection(str, Enum):
    HEADER_MALFORMED = "header_malformed"
    TIMESTAMP_STALE = "timestamp_stale"
    SIGNATURE_INVALID = "signature_invalid"
    SHAPE_INVALID = "shape_invalid"
    SECRET_MISSING = "secret_missing"


@dataclass(frozen=True)
class SignatureHeader:
    timestamp: str
    digest_hex: str


def parse_signature_header(signature_header: str | None) -> SignatureHeader | None:
    """Split ``t=...,v1=...`` into its parts. Returns None if either is missing."""
    if not signature_header:
        return None
    timestamp: str | None = None
    digest: str | None = None
    for part in signature_header.split(","):
        part = part.strip()
        if part.startswith("t=") and timestamp is None:
            timestamp = part[2:]
        elif part.startswith("v1=") and digest is None:
            digest = part[3:]
    if not timestamp or not digest:
        return None
    return SignatureHeader(timestamp=timestamp, digest_hex=digest)


def compute_signature(raw_body: bytes | str, timestamp: str, secret: str) -> str:
    """Hex HMAC-SHA256 of ``"<timestamp>.<raw_body>"`` keyed with ``secret``."""
    body = raw_body.encode() if isinstance(raw_body, str) else raw_body
    signed_payload = timestamp.encode() + b"." + body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes | str, signature_header: str | None, secret: str,
) -> bool:
    """Return True if the header's v1 digest matches the body.

    Never raises; malformed headers and non-hex digests verify as False.
    """
    parsed = parse_signature_header(signature_header)
    if parsed is None or not secret:
        return False

    expected = bytes.fromhex(compute_signature(raw_body, parsed.timestamp, secret))
    try:
        provided = bytes.fromhex(parsed.digest_hex)
    except ValueError:
        return False
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)


def is_timestamp_fresh(
    signature_header: str | None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Return True if the header's timestamp is within ``tolerance_seconds`` of now.

    The boundary is inclusive and skew is allowed in both directions.
    """
    parsed = parse_signature_header(signature_header)
    if parsed is None:
        return False
    try:
        timestamp = int(parsed.timestamp)
    except ValueError:
        return False
    now = int(time.time())
    return abs(now - timestamp) <= tolerance_seconds


def is_valid_envelope_shape(payload: Any) -> bool:
    """Structural check: string ``type`` and ``object`` plus a ``data`` field."""
    if not isinstance(payload, dict):
        return False
    return (
        "data" in payload
        and isinstance(payload.get("type"), str)
        and isinstance(payload.get("object"), str)
    )


@dataclass(frozen=True)
class WebhookCheck:
    """Result of the combined webhook gate. ``reason`` is for logs only."""

    accepted: bool
    reason: WebhookRejection | None = None
    payload: dict[str, Any] | None = None


class WebhookAuthenticator:
    """Runs signature, freshness and shape checks against one shared secret.

    ``skip_signature`` disables the signature and freshness checks for local
    testing; the shape check always runs.
    """

    def __init__(
        self,
        secret: str | None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        skip_signature: bool = False,
    ) -> None:
        self._secret = secret or None
        self._tolerance_seconds = tolerance_seconds
        self._skip_signature = skip_signature

    @property
    def configured(self) -> bool:
        return self._secret is not None

    def authenticate(self, raw_body: bytes, signature_header: str | None) -> WebhookCheck:
        """Verify authenticity and freshness of a raw webhook delivery."""
        if self._secret is None:
            return WebhookCheck(accepted=False, reason=WebhookRejection.SECRET_MISSING)
        if self._skip_signature:
            return WebhookCheck(accepted=True)

        if parse_signature_header(signature_header) is None:
            return self._reject(WebhookRejection.HEADER_MALFORMED)
        if not is_timestamp_fresh(signature_header, self._tolerance_seconds):
            return self._reject(WebhookRejection.TIMESTAMP_STALE)
        if not verify_signature(raw_body, signature_header, self._secret):
            return self._reject(WebhookRejection.SIGNATURE_INVALID)
        return WebhookCheck(accepted=True)

    def check_shape(self, payload: Any) -> WebhookCheck:
        if not is_valid_envelope_shape(payload):
            return self._reject(WebhookRejection.SHAPE_INVALID)
        return WebhookCheck(accepted=True, payload=payload)

    @staticmethod
    def _reject(reason: WebhookRejection) -> WebhookCheck:
        logger.warning("Webhook rejected: %s", reason.value)
        return WebhookCheck(accepted=False, reason=reason)
