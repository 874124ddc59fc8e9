"""Tests for the dispatch trail writer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.audit.logger import AuditLogger, read_trail
from src.models import AuditEvent, AuditEventType


def _make_event(**kwargs: object) -> AuditEvent:
    defaults: dict[str, object] = {
        "event_type": AuditEventType.PROMPT_DISPATCHED,
        "session_id": "sess-1",
        "action": "dispatch",
        "result": "success",
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]


def test_log_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "trail.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event(details={"channel_id": "chan-1"}))

    lines = log_file.read_text().strip().split("\n")
    assert len(lines) == 1
    parsed = json.loads(lines[0])
    assert parsed["event_type"] == "prompt_dispatched"
    assert parsed["details"] == {"channel_id": "chan-1"}


def test_log_multiple_events_append(tmp_path: Path) -> None:
    log_file = tmp_path / "trail.jsonl"
    logger = AuditLogger(log_path=str(log_file))

    for i in range(3):
        logger.log(_make_event(action=f"action_{i}"))

    lines = log_file.read_text().strip().split("\n")
    assert [json.loads(line)["action"] for line in lines] == ["action_0", "action_1", "action_2"]


def test_log_creates_parent_directory(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "trail.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    assert log_file.exists()


def test_rotation_keeps_backup_count(tmp_path: Path) -> None:
    log_file = tmp_path / "trail.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=1, backup_count=2)

    for i in range(4):
        logger.log(_make_event(action=f"a{i}"))

    # every write after the first rotates; only two backups survive
    assert json.loads(log_file.read_text())["action"] == "a3"
    assert json.loads((tmp_path / "trail.jsonl.1").read_text())["action"] == "a2"
    assert json.loads((tmp_path / "trail.jsonl.2").read_text())["action"] == "a1"
    assert not (tmp_path / "trail.jsonl.3").exists()


def test_from_env_reads_rotation_limits(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DISPATCH_TRAIL_MAX_BYTES", "1")
    monkeypatch.setenv("DISPATCH_TRAIL_BACKUP_COUNT", "1")
    log_file = tmp_path / "trail.jsonl"
    logger = AuditLogger.from_env(str(log_file))

    logger.log(_make_event(action="first"))
    logger.log(_make_event(action="second"))

    assert json.loads((tmp_path / "trail.jsonl.1").read_text())["action"] == "first"


class TestReadTrail:
    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert read_trail(tmp_path / "none.jsonl") == []

    def test_filters_by_session(self, tmp_path: Path) -> None:
        log_file = tmp_path / "trail.jsonl"
        logger = AuditLogger(log_path=str(log_file))
        logger.log(_make_event(session_id="a"))
        logger.log(_make_event(session_id="b", event_type=AuditEventType.CALLBACK_RECEIVED))
        logger.log(_make_event(session_id="a", event_type=AuditEventType.DISPATCH_RESULT))

        assert len(read_trail(log_file)) == 3
        events = [e["event_type"] for e in read_trail(log_file, session_id="a")]
        assert events == ["prompt_dispatched", "dispatch_result"]
