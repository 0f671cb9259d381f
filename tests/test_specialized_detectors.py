from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vibebar.engine.detectors import claude_log, copilot_hook, gemini_transcript
from vibebar.engine.detectors.claude_log import (
    ClaudeLogDetector,
    analyze_log_tail,
    read_tail,
)
from vibebar.engine.detectors.copilot_hook import (
    CopilotHookDetector,
    snapshot_from_state,
    status_for_event,
)
from vibebar.engine.detectors.gemini_transcript import (
    GeminiTranscriptDetector,
    analyze_transcript,
    collect_transcript_hints,
    transcript_paths_from_notes,
)
from vibebar.engine.detectors.support import ProcessInfo
from vibebar.engine.models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    format_timestamp,
)
from vibebar.shared.services.session_store import SessionStore

NOW = datetime(2026, 7, 1, 12, 0, 0, tzinfo=timezone.utc)


def _ts(seconds_ago: float) -> str:
    return format_timestamp(NOW - timedelta(seconds=seconds_ago))


def _jsonl(*entries: dict) -> str:
    return "".join(json.dumps(e) + "\n" for e in entries)


# -- Claude transcript ----------------------------------------------------

def test_claude_turn_marker_after_reply_is_idle() -> None:
    state = analyze_log_tail(_jsonl(
        {"type": "user", "timestamp": _ts(30), "cwd": "/repo"},
        {"type": "assistant", "timestamp": _ts(20)},
        {"type": "system", "subtype": "turn_duration", "timestamp": _ts(19)},
    ))
    assert state.status is ActivityState.IDLE
    assert state.cwd == "/repo"


def test_claude_reply_after_turn_marker_is_running() -> None:
    state = analyze_log_tail(_jsonl(
        {"type": "turn_duration", "timestamp": _ts(60)},
        {"type": "assistant", "timestamp": _ts(5)},
    ))
    assert state.status is ActivityState.RUNNING
    assert state.last_assistant_at == NOW - timedelta(seconds=5)


def test_claude_transcript_without_markers() -> None:
    assert analyze_log_tail("").status is ActivityState.UNKNOWN
    assert analyze_log_tail(_jsonl({"type": "assistant", "timestamp": _ts(1)})).status is ActivityState.RUNNING
    assert analyze_log_tail("{broken\n[1, 2]\n").status is ActivityState.UNKNOWN


def test_read_tail_drops_partial_first_line(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    path.write_text("a" * 50 + "\n" + "second\n", encoding="utf-8")

    assert read_tail(path, limit=10) == "second\n"
    assert read_tail(path).startswith("aaa")


@pytest.mark.asyncio
async def test_claude_detector_matches_pid_to_transcript(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / ".claude"
    (root / "debug").mkdir(parents=True)
    (root / "projects" / "-repo").mkdir(parents=True)
    session_id = "0f3c2d1e-aaaa-bbbb-cccc-1234deadbeef"
    stale = root / "debug" / ".tmp.4242.old-session.txt"
    stale.write_text("", encoding="utf-8")
    os.utime(stale, (1_000_000, 1_000_000))
    (root / "debug" / f".tmp.4242.{session_id}.txt").write_text("", encoding="utf-8")
    (root / "projects" / "-repo" / f"{session_id}.jsonl").write_text(_jsonl(
        {"type": "assistant", "timestamp": _ts(3), "cwd": "/repo"},
    ), encoding="utf-8")

    async def fake_list_processes():
        return [
            ProcessInfo(pid=4242, ppid=1, cpu=0.0, comm="claude", args="claude"),
            ProcessInfo(pid=5000, ppid=1, cpu=0.0, comm="claude", args="claude"),
            ProcessInfo(pid=6000, ppid=1, cpu=0.0, comm="zsh", args="zsh"),
        ]

    monkeypatch.setattr(claude_log, "list_processes", fake_list_processes)

    sessions = await ClaudeLogDetector(root).detect_sessions()

    assert len(sessions) == 1
    session = sessions[0]
    assert session.id == f"claude-log-{session_id}"
    assert session.pid == 4242
    assert session.status is ActivityState.RUNNING
    assert session.cwd == "/repo"
    assert session.notes == "Log parsed: deadbeef"


# -- Copilot hook files ---------------------------------------------------

def test_copilot_post_tool_use_turns_into_awaiting() -> None:
    assert status_for_event("post_tool_use", NOW - timedelta(seconds=1), NOW) is ActivityState.RUNNING
    assert status_for_event("post_tool_use", NOW - timedelta(seconds=10), NOW) is ActivityState.AWAITING_INPUT
    assert status_for_event("pre_tool_use", NOW - timedelta(seconds=10), NOW) is ActivityState.RUNNING


def test_copilot_state_requires_positive_pid() -> None:
    assert snapshot_from_state({"pid": 0, "last_event": "user_prompt"}, NOW) is None
    assert snapshot_from_state(["nope"], NOW) is None
    snapshot = snapshot_from_state(
        {"pid": 77, "last_event": "user_prompt", "cwd": "/w", "timestamp": _ts(2)}, NOW,
    )
    assert snapshot.id == "copilot-hook-77"
    assert snapshot.source is SessionSource.PLUGIN
    assert snapshot.notes == "hook:user_prompt"


@pytest.mark.asyncio
async def test_copilot_hook_detector_prunes_exited_processes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "100.json").write_text(json.dumps({
        "pid": 100, "last_event": "pre_tool_use", "cwd": "/a", "timestamp": _ts(1),
    }), encoding="utf-8")
    (tmp_path / "200.json").write_text(json.dumps({
        "pid": 200, "last_event": "user_prompt", "timestamp": _ts(1),
    }), encoding="utf-8")
    (tmp_path / "junk.json").write_text("{", encoding="utf-8")
    monkeypatch.setattr(copilot_hook, "is_process_alive", lambda pid: pid == 100)

    sessions = await CopilotHookDetector(tmp_path).detect_sessions()

    assert [s.id for s in sessions] == ["copilot-hook-100"]
    assert not (tmp_path / "200.json").exists()
    assert (tmp_path / "junk.json").exists()


# -- Gemini transcripts ---------------------------------------------------

def _plugin_session(session_id: str, notes: str, *, cwd=None, age: float = 0.0, tool=ToolKind.GEMINI) -> SessionSnapshot:
    at = NOW - timedelta(seconds=age)
    return SessionSnapshot(
        id=session_id,
        tool=tool,
        pid=0,
        status=ActivityState.RUNNING,
        source=SessionSource.PLUGIN,
        started_at=at,
        updated_at=at,
        cwd=cwd,
        notes=notes,
    )


def test_transcript_paths_from_notes() -> None:
    assert transcript_paths_from_notes("SessionStart|transcript=/r/.gemini/chats/a.json") == [
        "/r/.gemini/chats/a.json",
    ]
    assert transcript_paths_from_notes("vibebar-notify") == []
    assert transcript_paths_from_notes(None) == []


def test_hints_keep_newest_transcript_per_directory() -> None:
    hints = collect_transcript_hints([
        _plugin_session("a", "x|transcript=/old.json", cwd="/repo", age=60),
        _plugin_session("b", "x|transcript=/new.json", cwd="/repo", age=5),
        _plugin_session("c", "x|transcript=/home/me/proj/.gemini/tmp/c.json"),
        _plugin_session("d", "x|transcript=/ignored.json", cwd="/other", tool=ToolKind.CODEX),
    ])
    assert hints == {"/repo": "/new.json", "/home/me/proj": "/home/me/proj/.gemini/tmp/c.json"}


def test_analyze_transcript_states() -> None:
    fresh = {"lastUpdated": _ts(1), "messages": []}
    assert analyze_transcript(fresh, NOW)[0] is ActivityState.RUNNING

    waiting = {"messages": [
        {"type": "gemini", "timestamp": _ts(40)},
        {"type": "user", "timestamp": _ts(30)},
    ]}
    status, last_output, last_input = analyze_transcript(waiting, NOW)
    assert status is ActivityState.AWAITING_INPUT
    assert last_output == NOW - timedelta(seconds=40)
    assert last_input == NOW - timedelta(seconds=30)

    answered = {"messages": [
        {"type": "user", "timestamp": _ts(40)},
        {"type": "gemini", "timestamp": _ts(30)},
        {"type": "info", "timestamp": _ts(1)},
    ]}
    assert analyze_transcript(answered, NOW)[0] is ActivityState.IDLE
    assert analyze_transcript("garbage", NOW)[0] is ActivityState.UNKNOWN


@pytest.mark.asyncio
async def test_gemini_detector_reads_hinted_transcript(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    transcript = tmp_path / "chat.json"
    transcript.write_text(json.dumps({"messages": [{"type": "user", "timestamp": "2020-01-01T00:00:00Z"}]}), encoding="utf-8")
    store = SessionStore(tmp_path / "sessions")
    store.write(_plugin_session(
        "plugin-gemini-hook-g1", f"SessionStart|transcript={transcript}", cwd="/proj",
    ))

    async def fake_list_processes():
        return [ProcessInfo(pid=321, ppid=1, cpu=0.0, comm="gemini", args="gemini")]

    async def fake_cwds(pids):
        return {321: "/proj"}

    monkeypatch.setattr(gemini_transcript, "list_processes", fake_list_processes)
    monkeypatch.setattr(gemini_transcript, "bulk_get_cwds", fake_cwds)

    sessions = await GeminiTranscriptDetector(store).detect_sessions()

    assert len(sessions) == 1
    assert sessions[0].id == "gemini-transcript-321"
    assert sessions[0].status is ActivityState.AWAITING_INPUT
    assert sessions[0].cwd == "/proj"
