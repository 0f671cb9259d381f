"""Unix-socket event agent.

Accepts fire-and-forget connections from plugins and hooks, reads each
to EOF and applies every NDJSON line to the session store.

Protocol: newline-delimited JSON over a Unix stream socket. No replies.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path

from vibebar.engine.errors import AgentStartupError, EventParseError
from vibebar.engine.models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    utcnow,
)
from vibebar.shared.services.session_store import SessionStore

from .events import AgentEvent

logger = logging.getLogger(__name__)

_TERMINAL_MARKERS = ("end", "exit", "stop", "terminate", "close")
_AWAITING_MARKERS = ("permission", "await", "prompt", "approval")
_RUNNING_MARKERS = ("run", "start", "tool", "progress")

# Upper bound for one connection's payload.
MAX_CONNECTION_BYTES = 1 << 20


def is_terminal_event(event_type: str) -> bool:
    lowered = event_type.lower()
    return any(marker in lowered for marker in _TERMINAL_MARKERS)


def infer_status(event_type: str) -> ActivityState | None:
    lowered = event_type.lower()
    if any(marker in lowered for marker in _AWAITING_MARKERS):
        return ActivityState.AWAITING_INPUT
    if "idle" in lowered:
        return ActivityState.IDLE
    if any(marker in lowered for marker in _RUNNING_MARKERS):
        return ActivityState.RUNNING
    return None


def resolve_status(
    event: AgentEvent,
    previous: SessionSnapshot | None,
) -> ActivityState:
    """Explicit status, else inferred from the event type, else the last one."""
    if event.status is not None:
        return event.status
    inferred = infer_status(event.event_type)
    if inferred is not None:
        return inferred
    if previous is not None:
        return previous.status
    return ActivityState.RUNNING


class EventApplier:
    """Turns events into session snapshot upserts and deletions."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def apply(self, event: AgentEvent, now: datetime | None = None) -> SessionSnapshot | None:
        """Apply one event. Returns the written snapshot, None on deletion."""
        at = event.timestamp or now or utcnow()
        session_id = event.composite_session_id

        if is_terminal_event(event.event_type):
            logger.info("Session %s ended (%s)", session_id, event.event_type)
            self._store.delete(session_id)
            return None

        previous = self._store.load(session_id)
        status = resolve_status(event, previous)

        if previous is None:
            snapshot = SessionSnapshot(
                id=session_id,
                tool=event.tool,
                pid=event.pid or 0,
                parent_pid=event.parent_pid,
                status=status,
                source=SessionSource.PLUGIN,
                started_at=at,
                updated_at=at,
                cwd=event.cwd,
                command=event.command or [event.tool.executable],
            )
        else:
            snapshot = previous
            # Never move updated_at backwards for out-of-order events.
            if at < snapshot.updated_at:
                at = snapshot.updated_at

        snapshot.id = session_id
        snapshot.tool = event.tool
        snapshot.pid = event.pid if event.pid is not None else snapshot.pid
        snapshot.parent_pid = (
            event.parent_pid if event.parent_pid is not None else snapshot.parent_pid
        )
        snapshot.source = SessionSource.PLUGIN
        snapshot.status = status
        snapshot.updated_at = at
        snapshot.cwd = event.cwd or snapshot.cwd
        snapshot.command = event.command or snapshot.command
        snapshot.notes = event.notes or f"{event.source.value}:{event.event_type}"
        if status is ActivityState.RUNNING:
            snapshot.last_output_at = at
        elif status is ActivityState.AWAITING_INPUT:
            snapshot.last_input_at = at

        try:
            self._store.write(snapshot)
        except OSError as exc:
            logger.error("Failed to write session %s: %s", session_id, exc)
            return snapshot
        self._store.delete_other_sessions(snapshot.pid, keeping=session_id)
        logger.debug(
            "Applied %s/%s -> %s (%s)",
            event.source.value, event.event_type, session_id, status.value,
        )
        return snapshot

    def apply_payload(self, text: str) -> int:
        """Apply every line of a connection payload. Returns events applied."""
        applied = 0
        for line in text.splitlines():
            raw = line.strip()
            if not raw:
                continue
            try:
                event = AgentEvent.from_json_line(raw)
            except EventParseError as exc:
                logger.warning("Skipping malformed event: %s: %.200s", exc.reason, raw)
                continue
            self.apply(event)
            applied += 1
        return applied


class AgentServer:
    """Asyncio Unix-socket server; each connection is its own task."""

    def __init__(self, socket_path: Path, store: SessionStore) -> None:
        self._socket_path = Path(socket_path)
        self._applier = EventApplier(store)
        self._store = store
        self._server: asyncio.AbstractServer | None = None
        self._connections: set[asyncio.Task] = set()

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    async def start(self) -> None:
        """Remove any stale socket, then bind and listen."""
        if not socket_path_fits(self._socket_path):
            raise AgentStartupError(str(self._socket_path), "socket path too long")
        try:
            self._store.ensure_directory()
            self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AgentStartupError(str(self._socket_path), f"cannot create directories: {exc}") from exc
        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise AgentStartupError(str(self._socket_path), f"cannot remove stale socket: {exc}") from exc
        try:
            self._server = await asyncio.start_unix_server(
                self._handle_client, path=str(self._socket_path), backlog=64,
            )
        except OSError as exc:
            raise AgentStartupError(str(self._socket_path), str(exc)) from exc
        logger.info("Agent listening on %s", self._socket_path)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.close()
        for task in list(self._connections):
            task.cancel()
        self._connections.clear()
        if server is not None:
            await server.wait_closed()
        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Cannot remove socket %s: %s", self._socket_path, exc)
        logger.info("Agent stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task:
            self._connections.add(task)
        try:
            chunks: list[bytes] = []
            total = 0
            while True:
                chunk = await reader.read(65536)
                if not chunk:
                    break
                chunks.append(chunk)
                total += len(chunk)
                if total >= MAX_CONNECTION_BYTES:
                    logger.warning("Connection payload exceeds %d bytes, truncating", total)
                    break
            if chunks:
                text = b"".join(chunks).decode("utf-8", errors="replace")
                self._applier.apply_payload(text)
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            logger.debug("Client connection error: %s", exc)
        finally:
            if task:
                self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass


def socket_path_fits(path: Path) -> bool:
    """Unix socket paths are limited to ~104 bytes on macOS, 108 on Linux."""
    return len(os.fsencode(str(path))) < 104
