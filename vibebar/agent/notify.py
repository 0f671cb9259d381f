"""``vibebar notify``: one-shot events from shell hooks.

Tools without a plugin API (aider's notification command, Gemini and
Copilot shell hooks) call ``vibebar notify <tool> <state> [key=value...]``.
The hook's parent process is the tool itself, so its pid identifies the
session.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from vibebar.engine.detectors.support import is_process_alive
from vibebar.engine.errors import NotifyDeliveryError
from vibebar.engine.models import ActivityState, ToolKind, utcnow

from .client import send_events
from .events import AgentEvent, EventSource

logger = logging.getLogger(__name__)

STATUS_CHANGED = "status_changed"

# state word -> (status, event_type); event_type None means "use the word".
_STATE_TABLE: dict[str, tuple[ActivityState | None, str | None]] = {}


def _register(words: tuple[str, ...], status: ActivityState | None, event_type: str | None) -> None:
    for word in words:
        _STATE_TABLE[word] = (status, event_type)


_register(("running",), ActivityState.RUNNING, STATUS_CHANGED)
_register(
    ("awaiting_input", "awaiting-input", "awaiting", "input"),
    ActivityState.AWAITING_INPUT, STATUS_CHANGED,
)
_register(("idle",), ActivityState.IDLE, STATUS_CHANGED)
_register(("unknown",), ActivityState.UNKNOWN, STATUS_CHANGED)
_register(("start", "started", "session_started"), ActivityState.RUNNING, "session_started")
_register(
    ("end", "ended", "stop", "stopped", "session_end", "sessionend", "exit", "logout"),
    None, "session_end",
)
_register(
    ("sessionstart", "session_start", "startup", "resume", "clear"),
    ActivityState.RUNNING, "session_start",
)
_register(
    (
        "beforeagent", "before_agent", "beforemodel", "before_model",
        "beforetool", "before_tool", "beforetoolselection",
        "before_tool_selection", "aftermodel", "after_model",
        "aftertool", "after_tool",
    ),
    ActivityState.RUNNING, None,
)
_register(
    ("afteragent", "after_agent", "notification", "toolpermission", "tool_permission"),
    ActivityState.AWAITING_INPUT, None,
)

_SOURCES: dict[ToolKind, EventSource] = {
    ToolKind.AIDER: EventSource.AIDER_NOTIFY,
    ToolKind.GEMINI: EventSource.GEMINI_HOOK,
    ToolKind.GITHUB_COPILOT: EventSource.COPILOT_HOOK,
}

STATE_WORDS = tuple(sorted(_STATE_TABLE))


def parse_metadata(tokens: list[str]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        key = key.strip()
        if sep and key:
            metadata[key] = value.strip()
    return metadata


def build_notify_event(
    tool: ToolKind,
    state: str,
    tokens: list[str],
    *,
    pid: int | None = None,
    cwd: str | None = None,
) -> AgentEvent | None:
    """Translate a notify invocation into an event; None for unknown states."""
    raw = state.strip().lower()
    entry = _STATE_TABLE.get(raw)
    if entry is None:
        return None
    status, event_type = entry
    metadata = parse_metadata(tokens)

    if pid is None:
        parent = os.getppid()
        pid = parent if parent > 0 else os.getpid()
    session_id = metadata.get("session_id") or f"{tool.value}-{pid}"

    notes = metadata.get("hook_event_name") or "vibebar-notify"
    transcript = metadata.get("transcript_path") or metadata.get("transcript")
    if transcript:
        notes = f"{notes}|transcript={transcript}"

    return AgentEvent(
        source=_SOURCES.get(tool, EventSource.UNKNOWN),
        tool=tool,
        session_id=session_id,
        event_type=event_type or raw,
        status=status,
        timestamp=utcnow(),
        pid=pid,
        cwd=cwd if cwd is not None else os.getcwd(),
        command=[tool.executable],
        notes=notes,
        metadata=metadata,
    )


async def heartbeat(
    socket_path: Path,
    event: AgentEvent,
    interval_ms: int,
    stop: asyncio.Event | None = None,
    watch_pid: int | None = None,
) -> int:
    """Re-send ``event`` until the watched process exits or ``stop`` is set.

    Returns the number of deliveries. The first send must succeed; later
    failures are logged and retried on the next beat.
    """
    stop = stop or asyncio.Event()
    await send_events(socket_path, [event])
    sent = 1
    if interval_ms <= 0:
        return sent
    interval = interval_ms / 1000.0
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass
        if watch_pid is not None and not is_process_alive(watch_pid):
            logger.debug("Heartbeat target %d exited", watch_pid)
            break
        event.timestamp = utcnow()
        try:
            await send_events(socket_path, [event])
            sent += 1
        except NotifyDeliveryError as exc:
            logger.debug("Heartbeat delivery failed: %s", exc)
    return sent
