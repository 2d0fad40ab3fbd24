"""FastAPI gateway in front of the notes application."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.audit.logger import SecurityEventLog
from src.config import GatewaySettings, configure_logging
from src.proxy.identity import ClerkSessionIdentity, IdentityProvider
from src.proxy.rate_limit_middleware import RateLimitMiddleware
from src.ratelimit.dispatcher import (
    DEFAULT_EXTRACTORS,
    PolicyDispatcher,
    connection_address,
)
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.policies import PolicyTable, load_policies_from_file
from src.webhook.authenticator import WebhookAuthenticator
from src.webhook.clerk import SIGNATURE_HEADER, ClerkWebhookHandler
from src.webhook.models import UserRemovalHook, UserSyncHook

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/clerk-webhook"

_DEV_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = GatewaySettings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)


def _load_policies(policies_path: str) -> PolicyTable:
    if not os.path.exists(policies_path):
        return PolicyTable()
    return load_policies_from_file(policies_path)


def create_app(
    settings: GatewaySettings,
    policies: PolicyTable | None = None,
    identity_provider: IdentityProvider | None = None,
    user_sync: UserSyncHook | None = None,
    user_removal: UserRemovalHook | None = None,
    event_log: SecurityEventLog | None = None,
) -> FastAPI:
    """Create the gateway app. Each app owns its own limiter state."""
    app = FastAPI(docs_url=None, redoc_url=None)

    if policies is None:
        policies = _load_policies(settings.rate_policies_path)
    if identity_provider is None and settings.jwt_key:
        identity_provider = ClerkSessionIdentity(settings.jwt_key, settings.jwt_algorithm)
    if event_log is None:
        event_log = SecurityEventLog(settings.security_log_path)

    limiter = RateLimiter(sweep_interval=settings.sweep_interval)
    extractors = DEFAULT_EXTRACTORS
    if settings.use_connection_address:
        extractors = (*DEFAULT_EXTRACTORS, connection_address)
    dispatcher = PolicyDispatcher(limiter, policies, extractors)
    webhook_handler = ClerkWebhookHandler(
        WebhookAuthenticator(
            settings.webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
            skip_signature=(
                settings.webhook_skip_signature and settings.environment != "production"
            ),
        ),
        user_sync=user_sync,
        user_removal=user_removal,
        event_log=event_log,
    )
    app.state.limiter = limiter
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(WEBHOOK_PATH)
    async def clerk_webhook(request: Request) -> JSONResponse:
        body = await request.body()
        result = await webhook_handler.handle(body, request.headers.get(SIGNATURE_HEADER))
        return JSONResponse(result.body, status_code=result.status_code)

    @app.get(WEBHOOK_PATH)
    async def clerk_webhook_status() -> dict[str, str]:
        return {
            "message": "Clerk webhook endpoint is active",
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.api_route(
        "/{path:path}",
        methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "DELETE", "PATCH"],
    )
    async def proxy(request: Request, path: str) -> Response:
        url = f"{settings.upstream_url.rstrip('/')}/{path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        headers = dict(request.headers)
        headers.pop("host", None)
        headers.pop("content-length", None)
        body = await request.body()

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.request(
                    method=request.method,
                    url=url,
                    headers=headers,
                    content=body,
                    timeout=30.0,
                )
        except (httpx.ConnectError, httpx.TimeoutException):
            logger.warning("Upstream unavailable for %s %s", request.method, path)
            return JSONResponse({"error": "Upstream unavailable"}, status_code=502)

        fwd_headers = _strip_hop_by_hop(resp.headers)
        if settings.environment == "development":
            fwd_headers.update(_DEV_SECURITY_HEADERS)
        return Response(
            content=resp.content,
            status_code=resp.status_code,
            headers=fwd_headers,
        )

    app.add_middleware(
        RateLimitMiddleware,
        dispatcher=dispatcher,
        identity_provider=identity_provider,
        event_log=event_log,
    )

    return app


def _strip_hop_by_hop(headers: httpx.Headers) -> dict[str, str]:
    return {
        k: v for k, v in headers.items()
        if k.lower() not in (
            "content-length", "transfer-encoding",
            "connection", "keep-alive", "content-encoding",
        )
    }
