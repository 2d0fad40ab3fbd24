"""Tests for the Clerk webhook handler pipeline."""

from __future__ import annotations

import logging
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models import SecurityEventType
from src.webhook.authenticator import WebhookAuthenticator
from src.webhook.clerk import ClerkWebhookHandler
from tests.conftest import WEBHOOK_SECRET, encode_event, make_clerk_event, sign_body


def _handler(**kwargs) -> ClerkWebhookHandler:  # noqa: ANN003
    authenticator = kwargs.pop("authenticator", WebhookAuthenticator(WEBHOOK_SECRET))
    return ClerkWebhookHandler(authenticator, **kwargs)


class TestVerificationGate:
    @pytest.mark.asyncio
    async def test_missing_secret_returns_config_error(self) -> None:
        handler = _handler(authenticator=WebhookAuthenticator(None))
        body = encode_event(make_clerk_event())
        resp = await handler.handle(body, sign_body(body))
        assert resp.status_code == 500
        assert resp.body == {"error": "Webhook not configured"}

    @pytest.mark.asyncio
    async def test_missing_secret_logged_once(
        self, caplog: pytest.LogCaptureFixture, mock_event_log: MagicMock,
    ) -> None:
        handler = _handler(authenticator=WebhookAuthenticator(None), event_log=mock_event_log)
        body = encode_event(make_clerk_event())
        with caplog.at_level(logging.ERROR):
            for _ in range(3):
                resp = await handler.handle(body, sign_body(body))
                assert resp.status_code == 500
        errors = [r for r in caplog.records if "CLERK_WEBHOOK_SECRET" in r.getMessage()]
        assert len(errors) == 1
        assert mock_event_log.log.call_count == 1
        event = mock_event_log.log.call_args[0][0]
        assert event.event_type == SecurityEventType.WEBHOOK_MISCONFIGURED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "header_factory",
        [
            lambda body: None,
            lambda body: "t=123",
            lambda body: sign_body(body, secret="wrong"),
            lambda body: sign_body(body, timestamp=int(time.time()) - 3600),
        ],
    )
    async def test_uniform_rejection_body(self, header_factory) -> None:  # noqa: ANN001
        handler = _handler()
        body = encode_event(make_clerk_event())
        resp = await handler.handle(body, header_factory(body))
        assert resp.status_code == 401
        assert resp.body == {"error": "Invalid webhook signature"}

    @pytest.mark.asyncio
    async def test_rejection_reason_recorded(self, mock_event_log: MagicMock) -> None:
        handler = _handler(event_log=mock_event_log)
        body = encode_event(make_clerk_event())
        await handler.handle(body, sign_body(body, secret="wrong"))
        event = mock_event_log.log.call_args[0][0]
        assert event.event_type == SecurityEventType.WEBHOOK_REJECTED
        assert event.details == {"reason": "signature_invalid"}

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self) -> None:
        body = b"not json"
        resp = await _handler().handle(body, sign_body(body))
        assert resp.status_code == 400
        assert resp.body == {"error": "Invalid payload"}

    @pytest.mark.asyncio
    async def test_invalid_shape_is_400(self) -> None:
        body = encode_event({"type": "user.created", "data": {}})
        resp = await _handler().handle(body, sign_body(body))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_skip_signature_still_requires_shape(self) -> None:
        handler = _handler(authenticator=WebhookAuthenticator(WEBHOOK_SECRET, skip_signature=True))
        bad = encode_event({"hello": "world"})
        good = encode_event(make_clerk_event("session.created", user_id="user_2abc"))
        assert (await handler.handle(bad, None)).status_code == 400
        assert (await handler.handle(good, None)).status_code == 200


class TestEventDispatch:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["user.created", "user.updated"])
    async def test_user_sync(self, event_type: str) -> None:
        sync = AsyncMock(return_value="local-42")
        handler = _handler(user_sync=sync)
        body = encode_event(make_clerk_event(event_type, email="a@example.com"))
        resp = await handler.handle(body, sign_body(body))
        assert resp.status_code == 200
        assert resp.body == {"success": True, "userId": "local-42", "action": event_type}
        sync.assert_awaited_once()
        assert sync.call_args[0][0]["email"] == "a@example.com"

    @pytest.mark.asyncio
    async def test_user_sync_without_hook_echoes_clerk_id(self) -> None:
        body = encode_event(make_clerk_event())
        resp = await _handler().handle(body, sign_body(body))
        assert resp.body["userId"] == "user_2abc"

    @pytest.mark.asyncio
    async def test_user_sync_failure_does_not_leak_detail(self) -> None:
        sync = AsyncMock(side_effect=RuntimeError("db password=hunter2"))
        handler = _handler(user_sync=sync)
        body = encode_event(make_clerk_event())
        resp = await handler.handle(body, sign_body(body))
        assert resp.status_code == 500
        assert resp.body == {"error": "User sync failed"}

    @pytest.mark.asyncio
    async def test_user_deleted(self) -> None:
        removal = AsyncMock()
        handler = _handler(user_removal=removal)
        body = encode_event(make_clerk_event("user.deleted"))
        resp = await handler.handle(body, sign_body(body))
        assert resp.status_code == 200
        assert resp.body["message"] == "User deletion acknowledged"
        removal.assert_awaited_once_with("user_2abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["session.created", "session.ended"])
    async def test_session_events(self, event_type: str) -> None:
        body = encode_event(make_clerk_event(event_type, user_id="user_2abc"))
        resp = await _handler().handle(body, sign_body(body))
        assert resp.body == {
            "success": True,
            "action": event_type,
            "message": "Session event logged",
        }

    @pytest.mark.asyncio
    async def test_unknown_event_acknowledged(self, mock_event_log: MagicMock) -> None:
        handler = _handler(event_log=mock_event_log)
        body = encode_event(make_clerk_event("organization.created"))
        resp = await handler.handle(body, sign_body(body))
        assert resp.status_code == 200
        assert resp.body["message"] == "Event acknowledged but not processed"
        event = mock_event_log.log.call_args[0][0]
        assert event.event_type == SecurityEventType.WEBHOOK_ACCEPTED
