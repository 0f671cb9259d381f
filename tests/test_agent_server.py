from __future__ import annotations

import asyncio
import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vibebar.agent.client import send_events
from vibebar.agent.events import AgentEvent, EventSource
from vibebar.agent.server import (
    AgentServer,
    EventApplier,
    infer_status,
    is_terminal_event,
    socket_path_fits,
)
from vibebar.engine.errors import AgentStartupError, NotifyDeliveryError
from vibebar.engine.models import ActivityState, SessionSource, ToolKind
from vibebar.shared.services.session_store import SessionStore

T = datetime(2026, 6, 1, 10, 0, 0, tzinfo=timezone.utc)


def _event(event_type: str, *, session_id: str = "s1", status=None, pid=500, at=T) -> AgentEvent:
    return AgentEvent(
        source=EventSource.CLAUDE_PLUGIN,
        tool=ToolKind.CLAUDE_CODE,
        session_id=session_id,
        event_type=event_type,
        status=status,
        timestamp=at,
        pid=pid,
        cwd="/repo",
    )


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")


@pytest.mark.parametrize("event_type, terminal", [
    ("session_end", True),
    ("SessionEnd", True),
    ("process_exit", True),
    ("Stop", True),
    ("terminated", True),
    ("window_close", True),
    ("session_start", False),
    ("status_changed", False),
])
def test_terminal_event_detection(event_type: str, terminal: bool) -> None:
    assert is_terminal_event(event_type) is terminal


@pytest.mark.parametrize("event_type, expected", [
    ("permission_request", ActivityState.AWAITING_INPUT),
    ("AwaitingUser", ActivityState.AWAITING_INPUT),
    ("user_prompt", ActivityState.AWAITING_INPUT),
    ("went_idle", ActivityState.IDLE),
    ("before_tool", ActivityState.RUNNING),
    ("session_start", ActivityState.RUNNING),
    ("progress", ActivityState.RUNNING),
    ("heartbeat", None),
])
def test_status_inference(event_type: str, expected) -> None:
    assert infer_status(event_type) is expected


def test_first_event_creates_plugin_session(store: SessionStore) -> None:
    EventApplier(store).apply(_event("session_start"))

    session = store.load("plugin-claude-plugin-s1")
    assert session is not None
    assert session.source is SessionSource.PLUGIN
    assert session.status is ActivityState.RUNNING
    assert session.pid == 500
    assert session.started_at == T
    assert session.last_output_at == T
    assert session.notes == "claude-plugin:session_start"


def test_unknown_event_type_carries_previous_status(store: SessionStore) -> None:
    applier = EventApplier(store)
    applier.apply(_event("notification", status=ActivityState.AWAITING_INPUT))
    applier.apply(_event("heartbeat", at=T + timedelta(seconds=5)))

    session = store.load("plugin-claude-plugin-s1")
    assert session.status is ActivityState.AWAITING_INPUT
    assert session.updated_at == T + timedelta(seconds=5)


def test_unknown_event_type_defaults_to_running(store: SessionStore) -> None:
    EventApplier(store).apply(_event("heartbeat"))
    assert store.load("plugin-claude-plugin-s1").status is ActivityState.RUNNING


def test_terminal_event_deletes_even_with_status(store: SessionStore) -> None:
    applier = EventApplier(store)
    applier.apply(_event("session_start"))

    result = applier.apply(_event("session_end", status=ActivityState.IDLE))

    assert result is None
    assert store.load("plugin-claude-plugin-s1") is None


def test_updated_at_never_moves_backwards(store: SessionStore) -> None:
    applier = EventApplier(store)
    applier.apply(_event("running", at=T + timedelta(seconds=30)))
    applier.apply(_event("idle", at=T))

    session = store.load("plugin-claude-plugin-s1")
    assert session.status is ActivityState.IDLE
    assert session.updated_at == T + timedelta(seconds=30)
    assert session.started_at == T + timedelta(seconds=30)


def test_newer_session_for_same_pid_replaces_older(store: SessionStore) -> None:
    applier = EventApplier(store)
    applier.apply(_event("session_start", session_id="old"))
    applier.apply(_event("session_start", session_id="new"))

    assert [s.id for s in store.load_all()] == ["plugin-claude-plugin-new"]


def test_ids_differing_only_in_unsafe_characters_stay_separate(store: SessionStore) -> None:
    applier = EventApplier(store)
    applier.apply(_event("session_start", session_id="a/b"))
    written = applier.apply(_event("session_start", session_id="a:b"))

    assert written.id == "plugin-claude-plugin-a:b"
    assert [s.id for s in store.load_all()] == ["plugin-claude-plugin-a:b"]
    assert store.load("plugin-claude-plugin-a/b") is None


def test_payload_skips_malformed_lines(store: SessionStore) -> None:
    good = _event("session_start", session_id="ok").to_json_line()
    payload = "not json\n\n" + json.dumps({"tool": "codex"}) + "\n" + good

    assert EventApplier(store).apply_payload(payload) == 1
    assert store.load("plugin-claude-plugin-ok") is not None


def test_long_socket_paths_are_rejected() -> None:
    assert socket_path_fits(Path("/tmp/vibebar/agent.sock"))
    assert not socket_path_fits(Path("/tmp/" + "x" * 120 + "/agent.sock"))


@pytest.mark.asyncio
async def test_start_fails_cleanly_for_long_path(store: SessionStore) -> None:
    server = AgentServer(Path("/tmp/" + "y" * 120 + "/agent.sock"), store)
    with pytest.raises(AgentStartupError):
        await server.start()


@pytest.mark.asyncio
async def test_events_round_trip_through_socket(store: SessionStore) -> None:
    with tempfile.TemporaryDirectory(prefix="vb") as short_dir:
        socket_path = Path(short_dir) / "agent.sock"
        # A leftover socket file from a crashed agent must not block startup.
        socket_path.write_text("", encoding="utf-8")

        server = AgentServer(socket_path, store)
        await server.start()
        try:
            await send_events(socket_path, [
                _event("session_start", session_id="a", pid=601),
                _event("permission_request", session_id="b", pid=602),
            ])
            for _ in range(50):
                if len(store.load_all()) == 2:
                    break
                await asyncio.sleep(0.02)
        finally:
            await server.stop()

        statuses = {s.id: s.status for s in store.load_all()}
        assert statuses == {
            "plugin-claude-plugin-a": ActivityState.RUNNING,
            "plugin-claude-plugin-b": ActivityState.AWAITING_INPUT,
        }
        assert not socket_path.exists()


@pytest.mark.asyncio
async def test_send_without_agent_raises(tmp_path: Path) -> None:
    with pytest.raises(NotifyDeliveryError):
        await send_events(tmp_path / "absent.sock", [_event("session_start")])
