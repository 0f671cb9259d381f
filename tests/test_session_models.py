from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from vibebar.engine.errors import SessionDecodeError
from vibebar.engine.models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    decode_envelope,
    encode_envelope,
    format_timestamp,
    parse_timestamp,
)


def _snapshot(**overrides) -> SessionSnapshot:
    base = dict(
        id="wrapper-1",
        tool=ToolKind.CODEX,
        pid=4242,
        status=ActivityState.RUNNING,
        source=SessionSource.WRAPPER,
        started_at=datetime(2026, 3, 1, 9, 0, 0, 123456, tzinfo=timezone.utc),
        updated_at=datetime(2026, 3, 1, 9, 5, 0, 987654, tzinfo=timezone.utc),
    )
    base.update(overrides)
    return SessionSnapshot(**base)


def test_envelope_round_trip_truncates_to_milliseconds() -> None:
    original = _snapshot(
        parent_pid=100,
        last_output_at=datetime(2026, 3, 1, 9, 4, 59, 500999, tzinfo=timezone.utc),
        cwd="/work/repo",
        command=["codex", "--model", "o4"],
        notes="pty-wrapper",
    )

    restored = decode_envelope(encode_envelope(original))

    assert restored.id == original.id
    assert restored.tool is ToolKind.CODEX
    assert restored.parent_pid == 100
    assert restored.command == ["codex", "--model", "o4"]
    assert restored.started_at == original.started_at.replace(microsecond=123000)
    assert restored.updated_at == original.updated_at.replace(microsecond=987000)
    assert restored.last_output_at == datetime(2026, 3, 1, 9, 4, 59, 500000, tzinfo=timezone.utc)
    assert restored.last_input_at is None


def test_envelope_uses_camel_case_keys_and_omits_absent_optionals() -> None:
    payload = json.loads(encode_envelope(_snapshot()))

    assert payload["version"] == 1
    session = payload["session"]
    assert session["startedAt"] == "2026-03-01T09:00:00.123Z"
    assert "updatedAt" in session
    for absent in ("parentPID", "lastOutputAt", "lastInputAt", "cwd", "notes"):
        assert absent not in session


def test_completed_status_migrates_to_idle() -> None:
    payload = json.loads(encode_envelope(_snapshot()))
    payload["session"]["status"] = "completed"

    restored = decode_envelope(json.dumps(payload))

    assert restored.status is ActivityState.IDLE


def test_unrecognized_status_decodes_as_unknown() -> None:
    assert ActivityState.decode("thinking-hard") is ActivityState.UNKNOWN
    assert ActivityState.decode(None) is ActivityState.UNKNOWN
    assert ActivityState.decode("AWAITING_INPUT") is ActivityState.AWAITING_INPUT


def test_decode_rejects_unknown_tool() -> None:
    payload = json.loads(encode_envelope(_snapshot()))
    payload["session"]["tool"] = "notepad"

    with pytest.raises(SessionDecodeError):
        decode_envelope(json.dumps(payload))


def test_decode_rejects_garbage() -> None:
    with pytest.raises(SessionDecodeError):
        decode_envelope("{not json")
    with pytest.raises(SessionDecodeError):
        decode_envelope(json.dumps({"version": 1}))


def test_tool_aliases_are_case_insensitive() -> None:
    assert ToolKind.from_cli_argument("Claude") is ToolKind.CLAUDE_CODE
    assert ToolKind.from_cli_argument("claudecode") is ToolKind.CLAUDE_CODE
    assert ToolKind.from_cli_argument("open_code") is ToolKind.OPENCODE
    assert ToolKind.from_cli_argument("GitHub_Copilot") is ToolKind.GITHUB_COPILOT
    assert ToolKind.from_cli_argument("vim") is None


def test_detect_uses_binary_then_first_two_arguments() -> None:
    assert ToolKind.detect("/usr/local/bin/aider", []) is ToolKind.AIDER
    assert ToolKind.detect("node", ["node", "/opt/lib/node_modules/.bin/codex"]) is ToolKind.CODEX
    assert ToolKind.detect("node", ["claude", "--resume"]) is ToolKind.CLAUDE_CODE
    assert ToolKind.detect("python3", ["python3", "-m", "aider"]) is None


def test_parse_timestamp_accepts_zulu_offsets_and_epoch() -> None:
    expected = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_timestamp("2026-01-02T03:04:05Z") == expected
    assert parse_timestamp("2026-01-02T04:04:05+01:00") == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp("yesterday") is None
    assert format_timestamp(expected) == "2026-01-02T03:04:05.000Z"
