"""Structured lifecycle events sent by tool plugins and hooks.

Wire format: one JSON object per line (NDJSON) with snake_case keys::

    {"version": 1, "source": "claude-plugin", "tool": "claude-code",
     "session_id": "abc", "event_type": "status_changed",
     "status": "running", "timestamp": "2026-01-01T00:00:00.000Z",
     "pid": 4242, "cwd": "/repo", "metadata": {"hook_event": "PreToolUse"}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from vibebar.engine.errors import EventParseError
from vibebar.engine.models import (
    ActivityState,
    ToolKind,
    format_timestamp,
    parse_timestamp,
)

EVENT_VERSION = 1


class EventSource(str, Enum):
    """Producer of an event."""
    CLAUDE_PLUGIN = "claude-plugin"
    OPENCODE_PLUGIN = "opencode-plugin"
    COPILOT_HOOK = "copilot-hook"
    GEMINI_HOOK = "gemini-hook"
    AIDER_NOTIFY = "aider-notify"
    UNKNOWN = "unknown"

    @classmethod
    def decode(cls, value: Any) -> EventSource:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


@dataclass
class AgentEvent:
    source: EventSource
    tool: ToolKind
    session_id: str
    event_type: str
    version: int = EVENT_VERSION
    status: ActivityState | None = None
    timestamp: datetime | None = None
    pid: int | None = None
    parent_pid: int | None = None
    cwd: str | None = None
    command: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def composite_session_id(self) -> str:
        return f"plugin-{self.source.value}-{self.session_id}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "source": self.source.value,
            "tool": self.tool.value,
            "session_id": self.session_id,
            "event_type": self.event_type,
        }
        if self.status is not None:
            data["status"] = self.status.value
        if self.timestamp is not None:
            data["timestamp"] = format_timestamp(self.timestamp)
        if self.pid is not None:
            data["pid"] = self.pid
        if self.parent_pid is not None:
            data["parent_pid"] = self.parent_pid
        if self.cwd is not None:
            data["cwd"] = self.cwd
        if self.command is not None:
            data["command"] = list(self.command)
        if self.notes is not None:
            data["notes"] = self.notes
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":")) + "\n"

    @classmethod
    def from_dict(cls, data: Any) -> AgentEvent:
        if not isinstance(data, dict):
            raise EventParseError("event is not a JSON object")

        raw_tool = data.get("tool")
        tool = None
        if isinstance(raw_tool, str):
            try:
                tool = ToolKind(raw_tool)
            except ValueError:
                tool = ToolKind.from_cli_argument(raw_tool)
        if tool is None:
            raise EventParseError(f"unknown tool {raw_tool!r}")

        session_id = data.get("session_id")
        if isinstance(session_id, int) and not isinstance(session_id, bool):
            session_id = str(session_id)
        if not _optional_str(session_id):
            raise EventParseError("missing session_id")

        event_type = data.get("event_type")
        if not _optional_str(event_type):
            raise EventParseError("missing event_type")

        raw_status = data.get("status")
        status = ActivityState.decode(raw_status) if raw_status is not None else None

        command = data.get("command")
        if isinstance(command, list):
            command = [str(part) for part in command]
        else:
            command = None

        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            metadata = {str(k): str(v) for k, v in metadata.items() if v is not None}
        else:
            metadata = {}

        version = _optional_int(data.get("version"))
        return cls(
            version=version if version is not None else EVENT_VERSION,
            source=EventSource.decode(data.get("source", "unknown")),
            tool=tool,
            session_id=session_id.strip(),
            event_type=event_type.strip(),
            status=status,
            timestamp=parse_timestamp(data.get("timestamp")),
            pid=_optional_int(data.get("pid")),
            parent_pid=_optional_int(data.get("parent_pid")),
            cwd=_optional_str(data.get("cwd")),
            command=command,
            notes=_optional_str(data.get("notes")),
            metadata=metadata,
        )

    @classmethod
    def from_json_line(cls, line: str) -> AgentEvent:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise EventParseError(f"invalid JSON: {exc.msg}", line=line) from exc
        try:
            return cls.from_dict(data)
        except EventParseError as exc:
            raise EventParseError(exc.reason, line=line) from exc
