"""GitHub Copilot CLI detector reading per-process hook state files.

The ``vibebar hook copilot`` adapter writes ``<pid>.json`` with the last
hook event into ``~/.copilot/vibebar/``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from vibebar.shared.services.durable_write import discard_state_file

from ..models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    parse_timestamp,
    utcnow,
)
from .base import SessionDetector
from .support import is_process_alive

logger = logging.getLogger(__name__)

# After a tool call finishes the CLI either continues or waits for the
# user; with no follow-up event for this long it is waiting.
POST_TOOL_AWAIT_SECONDS = 3.0

_RUNNING_EVENTS = frozenset({"user_prompt", "pre_tool_use", "session_start"})


def status_for_event(event: str, at: datetime | None, now: datetime) -> ActivityState:
    if event in _RUNNING_EVENTS:
        return ActivityState.RUNNING
    if event == "post_tool_use":
        if at is not None and now - at > timedelta(seconds=POST_TOOL_AWAIT_SECONDS):
            return ActivityState.AWAITING_INPUT
        return ActivityState.RUNNING
    return ActivityState.RUNNING


def snapshot_from_state(data: Any, now: datetime) -> SessionSnapshot | None:
    if not isinstance(data, dict):
        return None
    pid = data.get("pid")
    if not isinstance(pid, int) or pid <= 0:
        return None
    event = str(data.get("last_event") or "").strip().lower()
    at = parse_timestamp(data.get("timestamp"))
    cwd = data.get("cwd")
    status = status_for_event(event, at, now)
    return SessionSnapshot(
        id=f"copilot-hook-{pid}",
        tool=ToolKind.GITHUB_COPILOT,
        pid=pid,
        status=status,
        source=SessionSource.PLUGIN,
        started_at=at or now,
        updated_at=at or now,
        last_output_at=at if status is ActivityState.RUNNING else None,
        cwd=cwd if isinstance(cwd, str) and cwd else None,
        notes=f"hook:{event or 'unknown'}",
    )


class CopilotHookDetector(SessionDetector):
    """Reads hook state files, pruning those of exited processes."""

    detector_name = "copilot_hook"

    def __init__(self, state_dir: Path) -> None:
        self._dir = Path(state_dir)

    async def _detect(self) -> list[SessionSnapshot]:
        if not self._dir.is_dir():
            return []
        now = utcnow()
        snapshots: list[SessionSnapshot] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.debug("Skipping unreadable Copilot hook file %s: %s", path, exc)
                continue
            snapshot = snapshot_from_state(data, now)
            if snapshot is None:
                continue
            if not is_process_alive(snapshot.pid):
                logger.debug("Removing Copilot hook file of exited pid %d", snapshot.pid)
                try:
                    discard_state_file(path)
                except OSError as exc:
                    logger.warning("Cannot remove stale hook file %s: %s", path, exc)
                continue
            snapshots.append(snapshot)
        return snapshots
