from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from vibebar.agent.events import AgentEvent, EventSource
from vibebar.engine.errors import EventParseError
from vibebar.engine.models import ActivityState, ToolKind


def test_parse_full_event_line() -> None:
    line = json.dumps({
        "version": 1,
        "source": "claude-plugin",
        "tool": "claude-code",
        "session_id": "abc",
        "event_type": "status_changed",
        "status": "awaiting_input",
        "timestamp": "2026-01-01T00:00:00.250Z",
        "pid": 4242,
        "parent_pid": "4000",
        "cwd": "/repo",
        "command": ["claude", "--resume"],
        "metadata": {"hook_event": "Notification", "tool_name": None},
    })

    event = AgentEvent.from_json_line(line)

    assert event.source is EventSource.CLAUDE_PLUGIN
    assert event.tool is ToolKind.CLAUDE_CODE
    assert event.status is ActivityState.AWAITING_INPUT
    assert event.timestamp == datetime(2026, 1, 1, 0, 0, 0, 250000, tzinfo=timezone.utc)
    assert event.pid == 4242
    assert event.parent_pid == 4000
    assert event.metadata == {"hook_event": "Notification"}
    assert event.composite_session_id == "plugin-claude-plugin-abc"


def test_minimal_event_defaults() -> None:
    event = AgentEvent.from_dict({
        "tool": "aider", "session_id": 17, "event_type": "start",
    })

    assert event.version == 1
    assert event.source is EventSource.UNKNOWN
    assert event.session_id == "17"
    assert event.status is None
    assert event.timestamp is None
    assert event.composite_session_id == "plugin-unknown-17"


def test_tool_accepts_cli_aliases() -> None:
    event = AgentEvent.from_dict({
        "tool": "copilot", "session_id": "s", "event_type": "start",
    })
    assert event.tool is ToolKind.GITHUB_COPILOT


@pytest.mark.parametrize("payload", [
    {"session_id": "s", "event_type": "start"},
    {"tool": "emacs", "session_id": "s", "event_type": "start"},
    {"tool": "codex", "event_type": "start"},
    {"tool": "codex", "session_id": "  ", "event_type": "start"},
    {"tool": "codex", "session_id": "s"},
    ["not", "an", "object"],
])
def test_incomplete_events_are_rejected(payload) -> None:
    with pytest.raises(EventParseError):
        AgentEvent.from_dict(payload)


def test_invalid_json_keeps_offending_line() -> None:
    with pytest.raises(EventParseError) as info:
        AgentEvent.from_json_line("{oops")
    assert info.value.line == "{oops"


def test_json_line_is_single_line_with_snake_case_keys() -> None:
    event = AgentEvent(
        source=EventSource.GEMINI_HOOK,
        tool=ToolKind.GEMINI,
        session_id="g1",
        event_type="before_tool",
        status=ActivityState.RUNNING,
        cwd="/w",
    )

    line = event.to_json_line()

    assert line.endswith("\n") and line.count("\n") == 1
    data = json.loads(line)
    assert data["session_id"] == "g1"
    assert data["event_type"] == "before_tool"
    assert "pid" not in data
    assert AgentEvent.from_json_line(line) == event
