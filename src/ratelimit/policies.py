"""Rate policies per route class and the path patterns that select them."""

from __future__ import annotations

import json
import re
from pathlib import Path

from pydantic import ValidationError

from src.models import RatePolicy, RouteClass

_MINUTE_MS = 60 * 1000

DEFAULT_POLICIES: dict[RouteClass, RatePolicy] = {
    RouteClass.AI: RatePolicy(name="ai", window_ms=_MINUTE_MS, max_requests=5),
    RouteClass.NOTES: RatePolicy(name="notes", window_ms=_MINUTE_MS, max_requests=50),
    RouteClass.API: RatePolicy(name="api", window_ms=_MINUTE_MS, max_requests=100),
    RouteClass.AUTH: RatePolicy(name="auth", window_ms=_MINUTE_MS, max_requests=10),
}

# Checked in order; the first class with a matching pattern wins.
# Patterns are matched against the start of the request path.
ROUTE_PATTERNS: tuple[tuple[RouteClass, tuple[re.Pattern[str], ...]], ...] = (
    (RouteClass.WEBHOOK, (re.compile(r"/api/clerk-webhook"),)),
    (RouteClass.AI, (re.compile(r"/api/generate-note"),)),
    (RouteClass.NOTES, (re.compile(r"/api/notes"),)),
    (RouteClass.AUTH, (re.compile(r"/sign-in"), re.compile(r"/sign-up"))),
    (RouteClass.API, (re.compile(r"/api/"),)),
)

# Route classes whose identifier never uses the authenticated actor.
IP_SCOPED_CLASSES = frozenset({RouteClass.AUTH})


class PolicyTable:
    """Immutable mapping of route class to rate policy."""

    def __init__(self, policies: dict[RouteClass, RatePolicy] | None = None) -> None:
        merged = dict(DEFAULT_POLICIES)
        if policies:
            merged.update(policies)
        self._policies = merged

    def get(self, route_class: RouteClass) -> RatePolicy | None:
        return self._policies.get(route_class)

    def items(self) -> list[tuple[RouteClass, RatePolicy]]:
        return list(self._policies.items())

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            cls.value: {"window_ms": p.window_ms, "max_requests": p.max_requests}
            for cls, p in self._policies.items()
        }


def load_policies_from_file(policies_path: str) -> PolicyTable:
    """Load policy overrides from a JSON object keyed by route class.

    Classes missing from the file keep their defaults.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file is not valid JSON, names an unknown or
            unlimited route class, or carries invalid limits.
    """
    path = Path(policies_path)
    if not path.exists():
        raise FileNotFoundError(f"Rate policy file not found: {policies_path}")

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in rate policy file: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError("Rate policy file must contain a JSON object")

    overrides: dict[RouteClass, RatePolicy] = {}
    for key, value in raw.items():
        try:
            route_class = RouteClass(key)
        except ValueError as e:
            raise ValueError(f"Unknown route class in rate policy file: {key}") from e
        if route_class not in DEFAULT_POLICIES:
            raise ValueError(f"Route class '{key}' is not rate limited")
        if not isinstance(value, dict):
            raise ValueError(f"Policy for '{key}' must be an object")
        try:
            overrides[route_class] = RatePolicy.model_validate({**value, "name": key})
        except ValidationError as e:
            raise ValueError(f"Invalid policy for '{key}': {e}") from e

    return PolicyTable(overrides)
