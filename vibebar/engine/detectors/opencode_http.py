"""OpenCode detector using the server's local HTTP status endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    utcnow,
)
from .base import SessionDetector
from .support import ProcessInfo, find_listening_port, list_processes

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 0.5

_STATE_MAP: dict[str, ActivityState] = {
    "idle": ActivityState.IDLE,
    "busy": ActivityState.RUNNING,
    "running": ActivityState.RUNNING,
    "awaiting_input": ActivityState.AWAITING_INPUT,
    "awaitinginput": ActivityState.AWAITING_INPUT,
}


def map_opencode_state(value: Any) -> ActivityState:
    if not isinstance(value, str):
        return ActivityState.UNKNOWN
    return _STATE_MAP.get(value.strip().lower(), ActivityState.UNKNOWN)


def parse_status_payload(
    payload: Any,
    proc: ProcessInfo,
    port: int,
) -> list[SessionSnapshot]:
    """Turn ``{session_id: {state, workspace_path}}`` into snapshots."""
    if not isinstance(payload, dict):
        return []
    now = utcnow()
    snapshots: list[SessionSnapshot] = []
    for session_id, info in payload.items():
        if not isinstance(info, dict):
            continue
        status = map_opencode_state(info.get("state") or info.get("type"))
        workspace = info.get("workspace_path")
        snapshots.append(SessionSnapshot(
            id=f"opencode-http-{session_id}",
            tool=ToolKind.OPENCODE,
            pid=proc.pid,
            parent_pid=proc.ppid,
            status=status,
            source=SessionSource.PROCESS_SCAN,
            started_at=now,
            updated_at=now,
            last_output_at=now if status is ActivityState.RUNNING else None,
            cwd=workspace if isinstance(workspace, str) else None,
            command=proc.argv,
            notes=f"HTTP API: port {port}",
        ))
    return snapshots


def _is_opencode(proc: ProcessInfo) -> bool:
    return "opencode" in proc.comm.lower() or "opencode" in proc.args.lower()


class OpenCodeHTTPDetector(SessionDetector):
    """Probes ``GET /session/status`` on each OpenCode server's listen port."""

    detector_name = "opencode_http"

    def __init__(self, timeout: float = PROBE_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    async def _detect(self) -> list[SessionSnapshot]:
        targets = [p for p in await list_processes() if _is_opencode(p)]
        if not targets:
            return []
        ports = await asyncio.gather(*(find_listening_port(p.pid) for p in targets))
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        snapshots: list[SessionSnapshot] = []
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for proc, port in zip(targets, ports):
                if port is None:
                    continue
                payload = await self.fetch_status(session, port)
                snapshots.extend(parse_status_payload(payload, proc, port))
        return snapshots

    @staticmethod
    async def fetch_status(
        session: aiohttp.ClientSession,
        port: int,
        host: str = "127.0.0.1",
    ) -> Any:
        url = f"http://{host}:{port}/session/status"
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    logger.debug("OpenCode status %s returned HTTP %d", url, resp.status)
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.debug("OpenCode status probe failed for %s: %s", url, exc)
            return None
