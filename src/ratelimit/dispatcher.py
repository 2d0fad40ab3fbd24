"""Policy dispatcher: maps a request to (identifier, policy) and back to a decision.

This module performs no I/O. The caller supplies the authenticated actor id
(if any) and turns the returned EnforcementResult into an HTTP response.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from src.models import RateDecision, RequestMetadata, RouteClass
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.policies import IP_SCOPED_CLASSES, ROUTE_PATTERNS, PolicyTable

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."

IdentifierExtractor = Callable[[RequestMetadata], str | None]


def _forwarded_for(request: RequestMetadata) -> str | None:
    value = request.header("x-forwarded-for")
    if not value:
        return None
    return value.split(",")[0].strip() or None


def _real_ip(request: RequestMetadata) -> str | None:
    value = request.header("x-real-ip")
    return value.strip() if value and value.strip() else None


def connection_address(request: RequestMetadata) -> str | None:
    """Peer address of the connection.

    Not part of the default chain; append it via ``extractors`` when the
    gateway is reachable without a proxy setting forwarding headers.
    """
    return request.client_host or None


# Requests with neither header share the "unknown" bucket.
DEFAULT_EXTRACTORS: tuple[IdentifierExtractor, ...] = (
    _forwarded_for,
    _real_ip,
)


def first_match(
    extractors: Sequence[IdentifierExtractor], request: RequestMetadata,
) -> str | None:
    """Return the first non-empty value produced by ``extractors``."""
    for extract in extractors:
        value = extract(request)
        if value:
            return value
    return None


@dataclass
class EnforcementResult:
    """Outcome of rate limit enforcement for one request."""

    allowed: bool
    route_class: RouteClass
    identifier: str | None = None
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, str] | None = None
    identity_fallback: bool = False


class PolicyDispatcher:
    """Selects a policy per route class and applies it through a RateLimiter."""

    def __init__(
        self,
        limiter: RateLimiter,
        policies: PolicyTable | None = None,
        extractors: Sequence[IdentifierExtractor] = DEFAULT_EXTRACTORS,
    ) -> None:
        self._limiter = limiter
        self._policies = policies or PolicyTable()
        self._extractors = tuple(extractors)

    @property
    def policies(self) -> PolicyTable:
        return self._policies

    def classify(self, request: RequestMetadata) -> RouteClass:
        if request.method.upper() == "OPTIONS":
            return RouteClass.UNCLASSIFIED
        for route_class, patterns in ROUTE_PATTERNS:
            if any(p.match(request.path) for p in patterns):
                return route_class
        return RouteClass.UNCLASSIFIED

    def uses_actor_identity(self, route_class: RouteClass) -> bool:
        """Whether the identity provider should be consulted for this class."""
        return (
            self._policies.get(route_class) is not None
            and route_class not in IP_SCOPED_CLASSES
        )

    def resolve_identifier(
        self, request: RequestMetadata, actor_id: str | None = None,
    ) -> str:
        if actor_id:
            return f"user:{actor_id}"
        address = first_match(self._extractors, request) or "unknown"
        return f"ip:{address}"

    def enforce_with_identity(
        self,
        request: RequestMetadata,
        identity: Callable[[], str | None] | None = None,
    ) -> EnforcementResult:
        """Enforce, asking ``identity`` for the actor only when the route needs it.

        A failing identity provider degrades to IP identification; it never
        fails the request.
        """
        actor_id: str | None = None
        fallback = False
        if identity is not None and self.uses_actor_identity(self.classify(request)):
            try:
                actor_id = identity()
            except Exception as exc:
                logger.warning(
                    "Identity resolution failed on %s, using connection address: %s",
                    request.path, exc,
                )
                fallback = True
        result = self.enforce(request, actor_id)
        result.identity_fallback = fallback
        return result

    def enforce(
        self, request: RequestMetadata, actor_id: str | None = None,
    ) -> EnforcementResult:
        route_class = self.classify(request)
        policy = self._policies.get(route_class)
        if policy is None:
            return EnforcementResult(allowed=True, route_class=route_class)

        if route_class in IP_SCOPED_CLASSES:
            actor_id = None
        identifier = self.resolve_identifier(request, actor_id)
        decision = self._limiter.check_and_consume(identifier, policy)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for %s on %s", identifier, request.path,
            )
            return EnforcementResult(
                allowed=False,
                route_class=route_class,
                identifier=identifier,
                status_code=429,
                headers=rejection_headers(decision, policy.max_requests),
                body={
                    "error": RATE_LIMIT_MESSAGE,
                    "resetTime": _iso_from_ms(decision.reset_at),
                },
            )

        return EnforcementResult(
            allowed=True,
            route_class=route_class,
            identifier=identifier,
            headers=quota_headers(decision, policy.max_requests),
        )


def quota_headers(decision: RateDecision, limit: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at / 1000)),
    }


def rejection_headers(decision: RateDecision, limit: int) -> dict[str, str]:
    headers = quota_headers(decision, limit)
    now_ms = int(time.time() * 1000)
    retry_after = max(math.ceil((decision.reset_at - now_ms) / 1000), 0)
    headers["Retry-After"] = str(retry_after)
    return headers


def _iso_from_ms(epoch_ms: int) -> str:
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
