"""Clerk webhook handler.

Pipeline stages:
1. Configuration check (secret present)
2. Signature and timestamp verification
3. JSON decode and envelope shape check
4. Event dispatch
5. Security event log
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from src.models import RiskLevel, SecurityEvent, SecurityEventType
from src.webhook.authenticator import WebhookAuthenticator, WebhookRejection
from src.webhook.models import (
    ClerkEventType,
    ClerkWebhookPayload,
    UserRemovalHook,
    UserSyncHook,
    WebhookResponse,
)

if TYPE_CHECKING:
    from src.audit.logger import SecurityEventLog

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "clerk-signature"

_NOT_CONFIGURED = WebhookResponse({"error": "Webhook not configured"}, status_code=500)
_UNAUTHORIZED = WebhookResponse({"error": "Invalid webhook signature"}, status_code=401)
_BAD_PAYLOAD = WebhookResponse({"error": "Invalid payload"}, status_code=400)


class ClerkWebhookHandler:
    """Verifies and dispatches Clerk webhook deliveries."""

    def __init__(
        self,
        authenticator: WebhookAuthenticator,
        user_sync: UserSyncHook | None = None,
        user_removal: UserRemovalHook | None = None,
        event_log: SecurityEventLog | None = None,
    ) -> None:
        self._authenticator = authenticator
        self._user_sync = user_sync
        self._user_removal = user_removal
        self._event_log = event_log
        self._misconfiguration_reported = False

    async def handle(self, raw_body: bytes, signature_header: str | None) -> WebhookResponse:
        check = self._authenticator.authenticate(raw_body, signature_header)
        if check.reason is WebhookRejection.SECRET_MISSING:
            self._report_misconfiguration()
            return _NOT_CONFIGURED
        if not check.accepted:
            self._record_rejection(check.reason)
            return _UNAUTHORIZED

        try:
            decoded = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Webhook rejected: body is not valid JSON")
            self._record_rejection(WebhookRejection.SHAPE_INVALID)
            return _BAD_PAYLOAD

        shape = self._authenticator.check_shape(decoded)
        if not shape.accepted:
            self._record_rejection(shape.reason)
            return _BAD_PAYLOAD

        payload = ClerkWebhookPayload.from_dict(decoded)
        logger.info("Received webhook: %s for %s", payload.type, payload.subject_id)
        response = await self._dispatch(payload)
        if self._event_log:
            self._event_log.log(SecurityEvent(
                event_type=SecurityEventType.WEBHOOK_ACCEPTED,
                action=f"webhook:{payload.type}",
                result="accepted" if response.status_code < 400 else "error",
                risk_level=RiskLevel.INFO,
                details={"status_code": response.status_code},
            ))
        return response

    async def _dispatch(self, payload: ClerkWebhookPayload) -> WebhookResponse:
        event = payload.type
        if event in (ClerkEventType.USER_CREATED, ClerkEventType.USER_UPDATED):
            return await self._sync_user(payload)
        if event == ClerkEventType.USER_DELETED:
            return await self._remove_user(payload)
        if event in (ClerkEventType.SESSION_CREATED, ClerkEventType.SESSION_ENDED):
            user_id = payload.data.get("user_id") if isinstance(payload.data, dict) else None
            logger.info("Session event: %s for user %s", event, user_id)
            return WebhookResponse({
                "success": True,
                "action": event,
                "message": "Session event logged",
            })

        logger.info("Unhandled webhook event: %s", event)
        return WebhookResponse({
            "success": True,
            "message": "Event acknowledged but not processed",
        })

    async def _sync_user(self, payload: ClerkWebhookPayload) -> WebhookResponse:
        user_id: str | None = payload.subject_id
        if self._user_sync is not None:
            data: dict[str, Any] = payload.data if isinstance(payload.data, dict) else {}
            try:
                user_id = await self._user_sync(data)
            except Exception:
                logger.exception("User sync failed for %s", payload.type)
                return WebhookResponse({"error": "User sync failed"}, status_code=500)
        return WebhookResponse({"success": True, "userId": user_id, "action": payload.type})

    async def _remove_user(self, payload: ClerkWebhookPayload) -> WebhookResponse:
        subject = payload.subject_id
        if self._user_removal is not None and subject:
            try:
                await self._user_removal(subject)
            except Exception:
                logger.exception("User deletion failed for %s", subject)
                return WebhookResponse({"error": "User deletion failed"}, status_code=500)
        return WebhookResponse({
            "success": True,
            "action": ClerkEventType.USER_DELETED.value,
            "message": "User deletion acknowledged",
        })

    def _report_misconfiguration(self) -> None:
        if self._misconfiguration_reported:
            return
        self._misconfiguration_reported = True
        logger.error(
            "CLERK_WEBHOOK_SECRET is not configured; all webhooks will be rejected",
        )
        if self._event_log:
            self._event_log.log(SecurityEvent(
                event_type=SecurityEventType.WEBHOOK_MISCONFIGURED,
                action="webhook:configure",
                result="rejected",
                risk_level=RiskLevel.CRITICAL,
            ))

    def _record_rejection(self, reason: WebhookRejection | None) -> None:
        if self._event_log:
            self._event_log.log(SecurityEvent(
                event_type=SecurityEventType.WEBHOOK_REJECTED,
                action="webhook:verify",
                result="rejected",
                risk_level=RiskLevel.HIGH,
                details={"reason": reason.value if reason else None},
            ))
