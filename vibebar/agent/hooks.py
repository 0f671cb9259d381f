"""Hook adapters invoked by the tools themselves.

``vibebar hook claude <HookEvent>`` receives Claude Code's hook JSON on
stdin and forwards a normalized event to the agent.
``vibebar hook copilot <hook_type>`` maintains the per-process state file
read by the Copilot hook detector.
"""
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vibebar.engine.models import ActivityState, ToolKind, utcnow
from vibebar.shared.services.durable_write import discard_state_file, publish_state_file

from .events import AgentEvent, EventSource

logger = logging.getLogger(__name__)

_RUNNING_HOOKS = frozenset({
    "userpromptsubmit",
    "pretooluse",
    "posttooluse",
    "posttoolusefailure",
    "subagentstart",
    "subagentstop",
})
_AWAITING_NOTIFICATIONS = frozenset({"permission_prompt", "elicitation_dialog"})


@dataclass(frozen=True)
class HookMapping:
    event_type: str
    status: ActivityState | None = None


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return None
    return None


def map_claude_hook(hook_event: str, payload: dict[str, Any]) -> HookMapping:
    event = hook_event.lower()
    if event == "sessionstart":
        return HookMapping("session_started", ActivityState.IDLE)
    if event == "sessionend":
        return HookMapping("session_ended", ActivityState.IDLE)
    if event == "permissionrequest":
        return HookMapping("status_changed", ActivityState.AWAITING_INPUT)
    if event in ("stop", "taskcompleted"):
        return HookMapping("status_changed", ActivityState.IDLE)
    if event == "notification":
        kind = (_as_str(payload.get("notification_type") or payload.get("notificationType")) or "").lower()
        if kind in _AWAITING_NOTIFICATIONS:
            return HookMapping("status_changed", ActivityState.AWAITING_INPUT)
        if kind == "idle_prompt":
            return HookMapping("status_changed", ActivityState.IDLE)
        return HookMapping("status_changed")
    if event in _RUNNING_HOOKS:
        return HookMapping("status_changed", ActivityState.RUNNING)
    return HookMapping("status_changed")


def claude_session_id(payload: dict[str, Any], ppid: int) -> str:
    session = payload.get("session")
    direct = _as_str(
        payload.get("session_id")
        or payload.get("sessionId")
        or (session.get("id") if isinstance(session, dict) else None)
    )
    if direct:
        return direct
    transcript = _as_str(payload.get("transcript_path") or payload.get("transcriptPath"))
    if transcript:
        return Path(transcript).stem
    return f"pid-{ppid}"


def build_claude_event(
    hook_event: str,
    payload: dict[str, Any],
    *,
    ppid: int | None = None,
    cwd: str | None = None,
) -> AgentEvent:
    ppid = ppid if ppid is not None else os.getppid()
    mapping = map_claude_hook(hook_event, payload)

    metadata = {"hook_event": hook_event}
    for key, alt in (
        ("notification_type", "notificationType"),
        ("tool_name", "toolName"),
        ("reason", None),
    ):
        value = _as_str(payload.get(key) or (payload.get(alt) if alt else None))
        if value:
            metadata[key] = value

    pid = _as_int(payload.get("pid") or payload.get("process_id") or payload.get("processId"))
    resolved_cwd = (
        _as_str(payload.get("cwd") or payload.get("working_directory") or payload.get("workingDirectory"))
        or cwd
        or os.getenv("CLAUDE_PROJECT_DIR")
        or os.getcwd()
    )
    return AgentEvent(
        source=EventSource.CLAUDE_PLUGIN,
        tool=ToolKind.CLAUDE_CODE,
        session_id=claude_session_id(payload, ppid),
        event_type=mapping.event_type,
        status=mapping.status,
        timestamp=utcnow(),
        pid=pid if pid is not None else ppid,
        cwd=resolved_cwd,
        command=[ToolKind.CLAUDE_CODE.executable],
        metadata=metadata,
    )


def parse_hook_payload(raw: str) -> dict[str, Any]:
    """Decode hook stdin; anything that is not a JSON object becomes ``{}``."""
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Hook payload is not JSON, ignoring")
        return {}
    return data if isinstance(data, dict) else {}


def write_copilot_state(
    state_dir: Path,
    hook_type: str,
    payload: dict[str, Any],
    *,
    ppid: int | None = None,
    cwd: str | None = None,
    now: float | None = None,
) -> Path:
    """Record the last hook event for the calling Copilot process.

    ``session_end`` removes the file instead.
    """
    ppid = ppid if ppid is not None else os.getppid()
    path = Path(state_dir) / f"{ppid}.json"
    if hook_type == "session_end":
        discard_state_file(path)
        return path
    state = {
        "pid": ppid,
        "last_event": hook_type,
        "cwd": _as_str(payload.get("cwd")) or cwd or os.getcwd(),
        "timestamp": now if now is not None else time.time(),
    }
    publish_state_file(path, json.dumps(state))
    return path
