"""Security event log as JSON Lines with a SHA-256 hash chain.

Events are mirrored to the ``notegate.security`` logger so they show up in
the process log even when no file is configured.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from src.models import RiskLevel, SecurityEvent

_mirror = logging.getLogger("notegate.security")

_LEVELS = {
    RiskLevel.CRITICAL: logging.ERROR,
    RiskLevel.HIGH: logging.WARNING,
    RiskLevel.MEDIUM: logging.WARNING,
    RiskLevel.LOW: logging.INFO,
    RiskLevel.INFO: logging.INFO,
}


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def validate_event_chain(log_path: Path) -> ChainValidationResult:
    """Check that every entry's prev_hash matches the line before it."""
    lines = [line for line in log_path.read_text().splitlines() if line]
    previous: str | None = None
    for number, line in enumerate(lines, start=1):
        expected = hashlib.sha256(previous.encode()).hexdigest() if previous else None
        if json.loads(line).get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=number)
        previous = line
    return ChainValidationResult(valid=True)


class SecurityEventLog:
    """Append-only security event sink.

    With ``log_path=None`` events only go to the mirror logger.
    """

    def __init__(self, log_path: str | None = None) -> None:
        self.log_path = Path(log_path) if log_path else None
        self._last_line: str | None = None
        if self.log_path and self.log_path.exists():
            lines = self.log_path.read_text().splitlines()
            self._last_line = lines[-1] if lines else None

    def log(self, event: SecurityEvent) -> None:
        _mirror.log(
            _LEVELS[event.risk_level],
            "%s %s result=%s identifier=%s details=%s",
            event.event_type.value, event.action, event.result,
            event.identifier, event.details,
        )
        if self.log_path is None:
            return

        data = json.loads(event.model_dump_json())
        data["prev_hash"] = (
            hashlib.sha256(self._last_line.encode()).hexdigest()
            if self._last_line is not None else None
        )
        line = json.dumps(data, separators=(",", ":"))

        # Write failures are logged, never raised to the caller.
        try:
            _append_line(self.log_path, line)
        except OSError:
            _mirror.exception("Could not write security event to %s", self.log_path)
            return
        self._last_line = line


def _append_line(log_path: Path, line: str) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    lock_file = log_path.parent / f".{log_path.name}.lock"
    with open(lock_file, "w") as lf:
        fcntl.flock(lf, fcntl.LOCK_EX)
        try:
            with open(log_path, "a") as f:
                f.write(line + "\n")
        finally:
            fcntl.flock(lf, fcntl.LOCK_UN)
