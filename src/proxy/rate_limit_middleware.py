"""ASGI middleware applying per-route-class rate limits."""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.audit.logger import SecurityEventLog
from src.models import RequestMetadata, RiskLevel, SecurityEvent, SecurityEventType
from src.proxy.identity import IdentityProvider
from src.ratelimit.dispatcher import EnforcementResult, PolicyDispatcher


def request_metadata(request: Request) -> RequestMetadata:
    return RequestMetadata(
        method=request.method,
        path=request.url.path,
        headers={k.lower(): v for k, v in request.headers.items()},
        client_host=request.client.host if request.client else None,
    )


class RateLimitMiddleware:
    """Rejects over-quota requests with 429 and stamps quota headers on the rest."""

    def __init__(
        self,
        app: ASGIApp,
        dispatcher: PolicyDispatcher,
        identity_provider: IdentityProvider | None = None,
        event_log: SecurityEventLog | None = None,
    ) -> None:
        self.app = app
        self._dispatcher = dispatcher
        self._identity = identity_provider
        self.event_log = event_log

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        metadata = request_metadata(request)
        identity = (lambda: self._identity(request)) if self._identity else None
        result = self._dispatcher.enforce_with_identity(metadata, identity)

        if result.identity_fallback:
            self._log(result, SecurityEventType.IDENTITY_FALLBACK, metadata, "degraded")

        if not result.allowed:
            self._log(result, SecurityEventType.RATE_LIMITED, metadata, "blocked")
            response = JSONResponse(
                result.body, status_code=result.status_code, headers=result.headers,
            )
            await response(scope, receive, send)
            return

        if not result.headers:
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in result.headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_wrapper)

    def _log(
        self,
        result: EnforcementResult,
        event_type: SecurityEventType,
        metadata: RequestMetadata,
        outcome: str,
    ) -> None:
        if self.event_log:
            self.event_log.log(SecurityEvent(
                event_type=event_type,
                identifier=result.identifier,
                action=f"{metadata.method} {metadata.path}",
                result=outcome,
                risk_level=RiskLevel.MEDIUM if outcome == "blocked" else RiskLevel.LOW,
                details={"route_class": result.route_class.value},
            ))
