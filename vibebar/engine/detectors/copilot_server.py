"""GitHub Copilot CLI detector using its local JSON-RPC server."""

from __future__ import annotations

import asyncio
import json
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

RPC_TIMEOUT_SECONDS = 0.8

STATUS_REQUEST = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "session/status",
    "params": {},
}

# Marker for a response body that is present but not JSON.
_UNPARSABLE = object()


def status_from_response(response: Any) -> ActivityState:
    """An idle server is waiting on the user; anything else is working."""
    if response is None:
        return ActivityState.UNKNOWN
    if isinstance(response, dict):
        result = response.get("result")
        if isinstance(result, dict):
            status = result.get("status")
            if isinstance(status, str) and status.strip().lower() == "idle":
                return ActivityState.AWAITING_INPUT
    return ActivityState.RUNNING


def _is_copilot(proc: ProcessInfo) -> bool:
    return proc.basename == "copilot"


class CopilotServerDetector(SessionDetector):
    """POSTs ``session/status`` to each Copilot process's listen port."""

    detector_name = "copilot_server"

    def __init__(self, timeout: float = RPC_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    async def _detect(self) -> list[SessionSnapshot]:
        targets = [p for p in await list_processes() if _is_copilot(p)]
        if not targets:
            return []
        ports = await asyncio.gather(*(find_listening_port(p.pid) for p in targets))
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        snapshots: list[SessionSnapshot] = []
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for proc, port in zip(targets, ports):
                if port is None:
                    continue
                response = await self.query_status(session, port)
                snapshots.append(self._snapshot(proc, port, response))
        return snapshots

    @staticmethod
    async def query_status(
        session: aiohttp.ClientSession,
        port: int,
        host: str = "127.0.0.1",
    ) -> Any:
        """Return the decoded response, ``None`` when nothing came back."""
        url = f"http://{host}:{port}"
        try:
            async with session.post(url, json=STATUS_REQUEST) as resp:
                body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("Copilot RPC probe failed for %s: %s", url, exc)
            return None
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return _UNPARSABLE

    @staticmethod
    def _snapshot(proc: ProcessInfo, port: int, response: Any) -> SessionSnapshot:
        now = utcnow()
        status = status_from_response(response)
        return SessionSnapshot(
            id=f"copilot-server-{proc.pid}",
            tool=ToolKind.GITHUB_COPILOT,
            pid=proc.pid,
            parent_pid=proc.ppid,
            status=status,
            source=SessionSource.PROCESS_SCAN,
            started_at=now,
            updated_at=now,
            last_output_at=now if status is ActivityState.RUNNING else None,
            command=proc.argv,
            notes=f"rpc-port:{port}",
        )
