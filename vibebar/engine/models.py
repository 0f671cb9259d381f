"""Core data models for the monitoring engine.

All dataclasses, enums, and timestamp helpers. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import SessionDecodeError

ENVELOPE_VERSION = 1


class ToolKind(str, Enum):
    """CLI tools the monitor knows how to recognize."""
    CLAUDE_CODE = "claude-code"
    CODEX = "codex"
    OPENCODE = "opencode"
    AIDER = "aider"
    GEMINI = "gemini"
    GITHUB_COPILOT = "github-copilot"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def executable(self) -> str:
        return _EXECUTABLES[self]

    @classmethod
    def from_cli_argument(cls, value: str) -> ToolKind | None:
        """Resolve a user-typed tool name, accepting common aliases."""
        return _CLI_ALIASES.get(value.strip().lower())

    @classmethod
    def from_executable(cls, name: str) -> ToolKind | None:
        return _BY_EXECUTABLE.get(os.path.basename(name).lower())

    @classmethod
    def detect(cls, command: str, args: list[str]) -> ToolKind | None:
        """Classify a process by its binary, then by its first two arguments.

        The argument fallback covers interpreters launching the tool
        script (``node /usr/lib/node_modules/.bin/codex``).
        """
        tool = cls.from_executable(command)
        if tool is not None:
            return tool
        for token in args[:2]:
            tool = cls.from_executable(token)
            if tool is not None:
                return tool
        return None


_DISPLAY_NAMES: dict[ToolKind, str] = {
    ToolKind.CLAUDE_CODE: "Claude Code",
    ToolKind.CODEX: "Codex",
    ToolKind.OPENCODE: "OpenCode",
    ToolKind.AIDER: "Aider",
    ToolKind.GEMINI: "Gemini CLI",
    ToolKind.GITHUB_COPILOT: "GitHub Copilot CLI",
}

_EXECUTABLES: dict[ToolKind, str] = {
    ToolKind.CLAUDE_CODE: "claude",
    ToolKind.CODEX: "codex",
    ToolKind.OPENCODE: "opencode",
    ToolKind.AIDER: "aider",
    ToolKind.GEMINI: "gemini",
    ToolKind.GITHUB_COPILOT: "copilot",
}

_BY_EXECUTABLE: dict[str, ToolKind] = {v: k for k, v in _EXECUTABLES.items()}

_CLI_ALIASES: dict[str, ToolKind] = {
    "claude": ToolKind.CLAUDE_CODE,
    "claude-code": ToolKind.CLAUDE_CODE,
    "claudecode": ToolKind.CLAUDE_CODE,
    "codex": ToolKind.CODEX,
    "opencode": ToolKind.OPENCODE,
    "open-code": ToolKind.OPENCODE,
    "open_code": ToolKind.OPENCODE,
    "aider": ToolKind.AIDER,
    "gemini": ToolKind.GEMINI,
    "gemini-cli": ToolKind.GEMINI,
    "copilot": ToolKind.GITHUB_COPILOT,
    "github-copilot": ToolKind.GITHUB_COPILOT,
    "githubcopilot": ToolKind.GITHUB_COPILOT,
    "github_copilot": ToolKind.GITHUB_COPILOT,
}


class ActivityState(str, Enum):
    """What a single session is doing right now."""
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    UNKNOWN = "unknown"

    @classmethod
    def decode(cls, value: Any) -> ActivityState:
        """Decode a stored status, applying legacy migrations.

        Unrecognized values decode as UNKNOWN instead of failing.
        """
        if not isinstance(value, str):
            return cls.UNKNOWN
        raw = value.strip().lower()
        if raw in _STATUS_MIGRATIONS:
            return _STATUS_MIGRATIONS[raw]
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


# Values written by older releases.
_STATUS_MIGRATIONS: dict[str, ActivityState] = {
    "completed": ActivityState.IDLE,
}


class OverallState(str, Enum):
    """Folded state of a group of sessions."""
    STOPPED = "stopped"
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    UNKNOWN = "unknown"


class SessionSource(str, Enum):
    """Channel that produced a snapshot."""
    WRAPPER = "wrapper"
    PROCESS_SCAN = "process_scan"
    PLUGIN = "plugin"


class DetectionMethod(str, Enum):
    """Per-tool detection channels that can be switched on or off."""
    HTTP_API = "http_api"
    LOG_FILE = "log_file"
    JSON_RPC = "json_rpc"
    HOOK_FILE = "hook_file"
    TRANSCRIPT_FILE = "transcript_file"
    PROCESS_SCAN = "process_scan"


# ── Timestamps ──


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Snapshots ──


@dataclass
class SessionSnapshot:
    """Point-in-time view of one monitored session.

    ``id`` encodes the producing channel and identity (``ps-<pid>``,
    ``plugin-<source>-<session>``, ``wrapper-<uuid>``) and stays stable
    for the lifetime of the logical session.
    """
    id: str
    tool: ToolKind
    pid: int
    status: ActivityState
    source: SessionSource
    started_at: datetime
    updated_at: datetime
    parent_pid: int | None = None
    last_output_at: datetime | None = None
    last_input_at: datetime | None = None
    cwd: str | None = None
    command: list[str] = field(default_factory=list)
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "tool": self.tool.value,
            "pid": self.pid,
            "status": self.status.value,
            "source": self.source.value,
            "startedAt": format_timestamp(self.started_at),
            "updatedAt": format_timestamp(self.updated_at),
            "command": list(self.command),
        }
        if self.parent_pid is not None:
            data["parentPID"] = self.parent_pid
        if self.last_output_at is not None:
            data["lastOutputAt"] = format_timestamp(self.last_output_at)
        if self.last_input_at is not None:
            data["lastInputAt"] = format_timestamp(self.last_input_at)
        if self.cwd is not None:
            data["cwd"] = self.cwd
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SessionSnapshot:
        if not isinstance(data, dict):
            raise SessionDecodeError("session payload is not an object")
        try:
            session_id = str(data["id"])
            tool = ToolKind(data["tool"])
            source = SessionSource(data["source"])
            pid = int(data["pid"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SessionDecodeError(f"invalid session field: {exc}") from exc

        started_at = parse_timestamp(data.get("startedAt"))
        updated_at = parse_timestamp(data.get("updatedAt"))
        if started_at is None or updated_at is None:
            raise SessionDecodeError(
                f"session {session_id} is missing startedAt/updatedAt"
            )

        parent_pid = data.get("parentPID")
        command = data.get("command") or []
        return cls(
            id=session_id,
            tool=tool,
            pid=pid,
            status=ActivityState.decode(data.get("status")),
            source=source,
            started_at=started_at,
            updated_at=updated_at,
            parent_pid=int(parent_pid) if isinstance(parent_pid, int) else None,
            last_output_at=parse_timestamp(data.get("lastOutputAt")),
            last_input_at=parse_timestamp(data.get("lastInputAt")),
            cwd=data.get("cwd") if isinstance(data.get("cwd"), str) else None,
            command=[str(part) for part in command] if isinstance(command, list) else [],
            notes=data.get("notes") if isinstance(data.get("notes"), str) else None,
        )


def encode_envelope(snapshot: SessionSnapshot) -> str:
    """Serialize a snapshot inside the versioned on-disk envelope."""
    payload = {"version": ENVELOPE_VERSION, "session": snapshot.to_dict()}
    return json.dumps(payload, indent=2, sort_keys=True)


def decode_envelope(text: str) -> SessionSnapshot:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SessionDecodeError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict) or "session" not in payload:
        raise SessionDecodeError("envelope has no session")
    return SessionSnapshot.from_dict(payload["session"])


# ── Summaries ──


@dataclass
class ToolSummary:
    """Per-tool fold of the live session set."""
    tool: ToolKind
    total: int = 0
    counts: dict[ActivityState, int] = field(
        default_factory=lambda: {state: 0 for state in ActivityState}
    )
    overall: OverallState = OverallState.STOPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool.value,
            "total": self.total,
            "counts": {state.value: n for state, n in self.counts.items()},
            "overall": self.overall.value,
        }


@dataclass
class GlobalSummary:
    """Global fold of the live session set, regenerated every pass."""
    total: int
    counts: dict[ActivityState, int]
    overall: OverallState
    by_tool: dict[ToolKind, ToolSummary]
    sessions: list[SessionSnapshot]
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "counts": {state.value: n for state, n in self.counts.items()},
            "overall": self.overall.value,
            "byTool": {
                tool.value: summary.to_dict()
                for tool, summary in self.by_tool.items()
            },
            "sessions": [s.to_dict() for s in self.sessions],
            "updatedAt": format_timestamp(self.updated_at),
        }
