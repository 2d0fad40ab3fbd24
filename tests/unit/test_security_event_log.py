"""Tests for the hash-chained security event log."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

import pytest

from src.audit.logger import SecurityEventLog, validate_event_chain
from src.models import RiskLevel, SecurityEvent, SecurityEventType


def _event(**kwargs) -> SecurityEvent:  # noqa: ANN003
    defaults: dict[str, object] = {
        "event_type": SecurityEventType.RATE_LIMITED,
        "identifier": "ip:1.2.3.4",
        "action": "POST /api/generate-note",
        "result": "blocked",
        "risk_level": RiskLevel.MEDIUM,
    }
    defaults.update(kwargs)
    return SecurityEvent(**defaults)  # type: ignore[arg-type]


def test_writes_json_lines_with_hash_chain(tmp_path: Path) -> None:
    path = tmp_path / "security.jsonl"
    log = SecurityEventLog(str(path))
    log.log(_event())
    log.log(_event(identifier="user:alice"))

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert first["prev_hash"] is None
    assert first["event_type"] == "rate_limited"
    assert second["prev_hash"] == hashlib.sha256(lines[0].encode()).hexdigest()
    assert validate_event_chain(path).valid is True


def test_chain_continues_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "security.jsonl"
    SecurityEventLog(str(path)).log(_event())
    SecurityEventLog(str(path)).log(_event())
    assert validate_event_chain(path).valid is True


def test_tampering_detected(tmp_path: Path) -> None:
    path = tmp_path / "security.jsonl"
    log = SecurityEventLog(str(path))
    for _ in range(3):
        log.log(_event())
    lines = path.read_text().splitlines()
    lines[1] = lines[1].replace("ip:1.2.3.4", "ip:5.6.7.8")
    path.write_text("\n".join(lines) + "\n")

    result = validate_event_chain(path)
    assert result.valid is False
    assert result.broken_at_line == 3


def test_without_path_only_mirrors(caplog: pytest.LogCaptureFixture) -> None:
    log = SecurityEventLog()
    with caplog.at_level(logging.INFO, logger="notegate.security"):
        log.log(_event(event_type=SecurityEventType.WEBHOOK_MISCONFIGURED,
                       risk_level=RiskLevel.CRITICAL, result="rejected"))
    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert "webhook_misconfigured" in record.getMessage()


def test_unwritable_path_is_logged_not_raised(
    tmp_path: Path, caplog: pytest.LogCaptureFixture,
) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    log = SecurityEventLog(str(blocker / "security.jsonl"))
    with caplog.at_level(logging.ERROR, logger="notegate.security"):
        log.log(_event())
    assert any("Could not write security event" in r.getMessage() for r in caplog.records)
    assert log._last_line is None


def test_creates_parent_directory(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "dir" / "security.jsonl"
    SecurityEventLog(str(path)).log(_event())
    assert path.exists()
