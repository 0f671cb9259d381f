"""Claude Code detector reading the tool's own session transcripts.

Claude writes ``~/.claude/debug/.tmp.<pid>.<session>.txt`` while running,
which ties a process to its session id, and appends every turn to
``~/.claude/projects/<project>/<session>.jsonl``. The relative order of
the last assistant message and the last ``turn_duration`` record tells
whether a turn is in flight.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ..models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    parse_timestamp,
    utcnow,
)
from .base import SessionDetector
from .support import ProcessInfo, list_processes

logger = logging.getLogger(__name__)

TAIL_BYTES = 131072

_DEBUG_MARKER = re.compile(r"^\.tmp\.(\d+)\.(.+)\.txt$")


@dataclass
class LogState:
    status: ActivityState
    last_assistant_at: datetime | None = None
    last_turn_at: datetime | None = None
    cwd: str | None = None


def _is_turn_marker(entry: dict) -> bool:
    return entry.get("type") == "turn_duration" or entry.get("subtype") == "turn_duration"


def analyze_log_tail(text: str) -> LogState:
    """Derive the session state from the tail of a JSONL transcript."""
    last_assistant: datetime | None = None
    last_turn: datetime | None = None
    cwd: str | None = None
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        entry_cwd = entry.get("cwd")
        if not isinstance(entry_cwd, str):
            context = entry.get("context")
            entry_cwd = context.get("cwd") if isinstance(context, dict) else None
        if isinstance(entry_cwd, str) and entry_cwd:
            cwd = entry_cwd
        ts = parse_timestamp(entry.get("timestamp"))
        if ts is None:
            continue
        if entry.get("type") == "assistant":
            last_assistant = ts
        elif _is_turn_marker(entry):
            last_turn = ts

    if last_assistant is not None and last_turn is not None:
        status = ActivityState.RUNNING if last_assistant > last_turn else ActivityState.IDLE
    elif last_assistant is not None:
        status = ActivityState.RUNNING
    elif last_turn is not None:
        status = ActivityState.IDLE
    else:
        status = ActivityState.UNKNOWN
    return LogState(
        status=status,
        last_assistant_at=last_assistant,
        last_turn_at=last_turn,
        cwd=cwd,
    )


def read_tail(path: Path, limit: int = TAIL_BYTES) -> str:
    """Return up to ``limit`` trailing bytes, dropping a leading partial line."""
    with open(path, "rb") as f:
        f.seek(0, 2)
        size = f.tell()
        offset = max(0, size - limit)
        f.seek(offset)
        data = f.read()
    if offset > 0:
        newline = data.find(b"\n")
        data = data[newline + 1:] if newline >= 0 else b""
    return data.decode("utf-8", errors="replace")


def _is_claude(proc: ProcessInfo) -> bool:
    return proc.comm == "claude" or proc.comm.endswith("/claude")


class ClaudeLogDetector(SessionDetector):
    """Tails Claude Code transcripts for every running ``claude`` process."""

    detector_name = "claude_log"

    def __init__(self, claude_root: Path) -> None:
        self._root = Path(claude_root)

    def session_ids_by_pid(self) -> dict[int, str]:
        """Map process ids to session ids using the debug marker files."""
        debug_dir = self._root / "debug"
        if not debug_dir.is_dir():
            return {}
        newest: dict[int, tuple[float, str]] = {}
        for path in debug_dir.iterdir():
            match = _DEBUG_MARKER.match(path.name)
            if not match:
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            pid = int(match.group(1))
            if pid not in newest or mtime > newest[pid][0]:
                newest[pid] = (mtime, match.group(2))
        return {pid: sid for pid, (_, sid) in newest.items()}

    def find_transcript(self, session_id: str) -> Path | None:
        projects = self._root / "projects"
        if not projects.is_dir():
            return None
        for path in projects.glob(f"*/{session_id}.jsonl"):
            return path
        for path in projects.rglob(f"{session_id}.jsonl"):
            return path
        return None

    def snapshot_for(self, proc: ProcessInfo, session_id: str) -> SessionSnapshot | None:
        transcript = self.find_transcript(session_id)
        if transcript is None:
            return None
        try:
            state = analyze_log_tail(read_tail(transcript))
        except OSError as exc:
            logger.debug("Cannot read Claude transcript %s: %s", transcript, exc)
            return None
        now = utcnow()
        return SessionSnapshot(
            id=f"claude-log-{session_id}",
            tool=ToolKind.CLAUDE_CODE,
            pid=proc.pid,
            parent_pid=proc.ppid,
            status=state.status,
            source=SessionSource.PROCESS_SCAN,
            started_at=now,
            updated_at=now,
            last_output_at=state.last_assistant_at,
            last_input_at=state.last_turn_at,
            cwd=state.cwd,
            command=proc.argv,
            notes=f"Log parsed: {session_id[-8:]}",
        )

    async def _detect(self) -> list[SessionSnapshot]:
        claude_procs = [p for p in await list_processes() if _is_claude(p)]
        if not claude_procs:
            return []
        sessions = self.session_ids_by_pid()
        snapshots: list[SessionSnapshot] = []
        for proc in claude_procs:
            session_id = sessions.get(proc.pid)
            if session_id is None:
                continue
            snapshot = self.snapshot_for(proc, session_id)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots
