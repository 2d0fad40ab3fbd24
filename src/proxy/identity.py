"""Actor identity from the identity provider's session token.

The gateway never issues or refreshes sessions; it only reads the subject of
an already-issued Clerk session JWT so that rate limits can be applied per
user instead of per address.
"""

from __future__ import annotations

from typing import Protocol

import jwt
from starlette.requests import Request

SESSION_COOKIE = "__session"


class IdentityProvider(Protocol):
    def __call__(self, request: Request) -> str | None: ...


class ClerkSessionIdentity:
    """Resolves the actor id from a Clerk session token.

    The token is read from ``Authorization: Bearer`` or the ``__session``
    cookie. Returns None when no token is present. An invalid or expired
    token raises ``jwt.PyJWTError``.
    """

    def __init__(self, key: str, algorithm: str = "RS256", leeway: int = 5) -> None:
        self._key = key
        self._algorithm = algorithm
        self._leeway = leeway

    def __call__(self, request: Request) -> str | None:
        token = _session_token(request)
        if not token:
            return None
        claims = jwt.decode(
            token,
            self._key,
            algorithms=[self._algorithm],
            leeway=self._leeway,
            options={"require": ["exp", "sub"]},
        )
        return str(claims["sub"])


def _session_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE) or None
