"""In-memory fixed window rate limiter keyed by actor identifier.

Window state is process-local. Horizontally scaled deployments get one quota
per instance; sharing quotas across instances needs an external store.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from src.models import RateDecision, RatePolicy


@dataclass
class RateWindow:
    """Request count for one identifier within the current fixed window."""

    count: int
    window_start: int
    reset_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Fixed window counters, one independent map per policy.

    Stale windows are swept every ``sweep_interval`` calls so that memory
    stays bounded without scanning on every request.
    """

    def __init__(self, sweep_interval: int = 1000) -> None:
        if sweep_interval < 1:
            raise ValueError("sweep_interval must be >= 1")
        self._sweep_interval = sweep_interval
        self._windows: dict[RatePolicy, dict[str, RateWindow]] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def check_and_consume(self, identifier: str, policy: RatePolicy) -> RateDecision:
        """Admit or deny one request for ``identifier`` under ``policy``."""
        with self._lock:
            now = _now_ms()
            self._calls += 1
            if self._calls % self._sweep_interval == 0:
                self._sweep_locked(now)

            windows = self._windows.setdefault(policy, {})
            window = windows.get(identifier)

            if window is None or now > window.reset_at:
                window = RateWindow(
                    count=1, window_start=now, reset_at=now + policy.window_ms,
                )
                windows[identifier] = window
                return RateDecision(
                    allowed=True,
                    remaining=policy.max_requests - 1,
                    reset_at=window.reset_at,
                )

            if window.count >= policy.max_requests:
                return RateDecision(allowed=False, remaining=0, reset_at=window.reset_at)

            window.count += 1
            return RateDecision(
                allowed=True,
                remaining=policy.max_requests - window.count,
                reset_at=window.reset_at,
            )

    def sweep(self) -> int:
        """Drop every expired window. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(_now_ms())

    def tracked(self, policy: RatePolicy | None = None) -> int:
        """Number of windows currently held, for one policy or all of them."""
        with self._lock:
            if policy is not None:
                return len(self._windows.get(policy, {}))
            return sum(len(w) for w in self._windows.values())

    def _sweep_locked(self, now: int) -> int:
        removed = 0
        for policy, windows in list(self._windows.items()):
            expired = [key for key, w in windows.items() if now > w.reset_at]
            for key in expired:
                del windows[key]
            removed += len(expired)
            if not windows:
                del self._windows[policy]
        return removed
