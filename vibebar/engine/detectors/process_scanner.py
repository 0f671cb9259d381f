"""Fallback detector that classifies raw OS processes.

Needs no cooperation from the tool: any known CLI started from an
interactive shell shows up, with CPU usage as a coarse activity signal.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import datetime

from ..models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    utcnow,
)
from .base import SessionDetector
from .support import ProcessInfo, bulk_get_cwds, list_processes

logger = logging.getLogger(__name__)

RUNNING_CPU_THRESHOLD = 3.0

_SHELLS = frozenset({
    "bash", "zsh", "fish", "sh", "dash", "tcsh", "csh", "ksh", "nu", "xonsh",
    "-bash", "-zsh", "-fish", "-sh", "-dash", "-tcsh", "-csh", "-ksh",
})
_TERMINAL_HOSTS = frozenset({
    "login", "sshd", "tmux", "screen", "terminal", "iterm2", "code",
    "alacritty", "kitty", "warp", "hyper", "wezterm-gui", "ghostty",
    "gnome-terminal-server", "konsole", "xterm", "mosh-server",
})
# A tool reparented to the init process after its shell exited.
_INIT_PROCESSES = frozenset({"launchd", "init", "systemd"})

_JS_RUNTIMES = frozenset({"node", "nodejs", "npm", "npx", "pnpm", "yarn", "bun"})
_GEMINI_MARKERS = ("@google/gemini-cli", "gemini-cli", "/gemini.js", "/gemini.mjs")

_OWN_BINARIES = frozenset({"vibebar"})


def _is_interactive_parent(parent: ProcessInfo | None) -> bool:
    if parent is None:
        return True
    name = parent.basename.lower()
    return name in _SHELLS or name in _TERMINAL_HOSTS or name in _INIT_PROCESSES


def classify_process(proc: ProcessInfo) -> ToolKind | None:
    """Map a process to a tool by binary name, arguments, or JS entrypoint."""
    argv = proc.argv
    name = proc.basename.lower()
    if name in _OWN_BINARIES:
        return None
    if argv and os.path.basename(argv[0]).lower() in _OWN_BINARIES:
        return None
    if name in _JS_RUNTIMES:
        lowered = proc.args.lower()
        if any(marker in lowered for marker in _GEMINI_MARKERS):
            return ToolKind.GEMINI
    return ToolKind.detect(proc.comm, argv)


def build_snapshots(
    candidates: list[tuple[ProcessInfo, ToolKind]],
    cwds: dict[int, str],
    now: datetime,
) -> list[SessionSnapshot]:
    """Build ``ps-<pid>`` snapshots from classified processes."""
    snapshots: list[SessionSnapshot] = []
    for proc, tool in candidates:
        running = proc.cpu >= RUNNING_CPU_THRESHOLD
        notes = f"cpu={proc.cpu:.1f}%"
        if tool is ToolKind.GEMINI:
            notes = f"process-fallback {notes}"
        snapshots.append(SessionSnapshot(
            id=f"ps-{proc.pid}",
            tool=tool,
            pid=proc.pid,
            parent_pid=proc.ppid,
            status=ActivityState.RUNNING if running else ActivityState.IDLE,
            source=SessionSource.PROCESS_SCAN,
            started_at=now,
            updated_at=now,
            cwd=cwds.get(proc.pid),
            command=proc.argv,
            notes=notes,
        ))
    return snapshots


def find_candidates(
    processes: Iterable[ProcessInfo],
    enabled_tools: set[ToolKind],
) -> list[tuple[ProcessInfo, ToolKind]]:
    table = {p.pid: p for p in processes}
    own_pid = os.getpid()
    candidates: list[tuple[ProcessInfo, ToolKind]] = []
    for proc in table.values():
        if proc.pid == own_pid:
            continue
        tool = classify_process(proc)
        if tool is None or tool not in enabled_tools:
            continue
        if not _is_interactive_parent(table.get(proc.ppid)):
            continue
        candidates.append((proc, tool))
    return candidates


class ProcessScanner(SessionDetector):
    """Enumerates the process table once per refresh."""

    detector_name = "process_scan"

    def __init__(self, enabled_tools: set[ToolKind]) -> None:
        self._enabled_tools = set(enabled_tools)

    async def _detect(self) -> list[SessionSnapshot]:
        if not self._enabled_tools:
            return []
        processes = await list_processes()
        candidates = find_candidates(processes, self._enabled_tools)
        if not candidates:
            return []
        cwds = await bulk_get_cwds([proc.pid for proc, _ in candidates])
        snapshots = build_snapshots(candidates, cwds, utcnow())
        logger.debug("Process scan found %d candidate(s)", len(snapshots))
        return snapshots
