from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from rich.console import Console

from vibebar import app
from vibebar.engine.aggregation import build_summary
from vibebar.engine.cli import render_summary
from vibebar.engine.config import MonitorConfig
from vibebar.engine.models import ActivityState, SessionSnapshot, SessionSource, ToolKind


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "vibebar"
    monkeypatch.setenv("VIBEBAR_HOME", str(home))
    monkeypatch.delenv("VIBEBAR_AGENT_SOCKET", raising=False)
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)
    return home


def test_no_arguments_prints_usage(capsys) -> None:
    assert app.run_cli([]) == app.EXIT_USAGE
    assert "usage:" in capsys.readouterr().err


def test_help_goes_to_stdout(capsys) -> None:
    assert app.run_cli(["--help"]) == app.EXIT_OK
    assert "vibebar notify" in capsys.readouterr().out


def test_unknown_tool_is_a_usage_error(capsys) -> None:
    assert app.run_cli(["emacs"]) == app.EXIT_USAGE
    assert "unknown tool 'emacs'" in capsys.readouterr().err


def test_version_prefers_pinned_file(isolated_home: Path, capsys) -> None:
    (isolated_home / "bin").mkdir(parents=True)
    (isolated_home / "bin" / "vibebar.version").write_text("9.9.9\n", encoding="utf-8")

    assert app.run_cli(["--version"]) == app.EXIT_OK
    assert capsys.readouterr().out.strip() == "9.9.9"


def test_version_without_pinned_file(tmp_path: Path) -> None:
    assert app.wrapper_version(MonitorConfig(app_dir=tmp_path)) != ""


def test_notify_unknown_state(capsys) -> None:
    assert app.run_cli(["notify", "aider", "dancing"]) == app.EXIT_USAGE
    assert "unknown state 'dancing'" in capsys.readouterr().err


def test_notify_without_agent_fails(capsys) -> None:
    assert app.run_cli(["notify", "aider", "running"]) == app.EXIT_NOTIFY_FAILED
    assert "cannot notify agent" in capsys.readouterr().err


def test_notify_heartbeat_accepts_metadata_after_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    delivered = []

    async def fake_heartbeat(socket_path, event, interval_ms, stop=None, watch_pid=None):
        delivered.append((event, watch_pid))
        return 1

    monkeypatch.setattr(app, "heartbeat", fake_heartbeat)

    code = app.run_cli(["notify", "gemini", "running", "--heartbeat", "session_id=abc"])

    assert code == app.EXIT_OK
    [(event, watch_pid)] = delivered
    assert event.session_id == "abc"
    assert event.tool is ToolKind.GEMINI
    assert watch_pid == event.pid


def test_notify_end_with_heartbeat_flag_sends_once(monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []

    async def fake_send(socket_path, events, timeout=1.5):
        sent.extend(events)

    monkeypatch.setattr(app, "send_events", fake_send)

    code = app.run_cli(["notify", "aider", "end", "--heartbeat", "session_id=s1", "x=1"])

    assert code == app.EXIT_OK
    assert [e.session_id for e in sent] == ["s1"]
    assert sent[0].metadata["x"] == "1"


def test_wrap_strips_leading_separator(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(
        app, "_wrap_command",
        lambda tool, rest, config: calls.append((tool, rest)) or 0,
    )

    assert app.run_cli(["codex", "--", "--model", "o4"]) == 0
    assert calls == [(ToolKind.CODEX, ["--model", "o4"])]


def test_bad_env_is_reported(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv("VIBEBAR_IDLE_TTL", "never")
    assert app.run_cli(["codex"]) == app.EXIT_USAGE
    assert "VIBEBAR_IDLE_TTL" in capsys.readouterr().err


def test_render_summary_lists_sessions() -> None:
    at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    summary = build_summary([
        SessionSnapshot(
            id="ps-77",
            tool=ToolKind.AIDER,
            pid=77,
            status=ActivityState.AWAITING_INPUT,
            source=SessionSource.PROCESS_SCAN,
            started_at=at,
            updated_at=at,
            cwd="/repo",
        ),
    ], now=at)

    console = Console(record=True, width=160)
    console.print(render_summary(summary))
    text = console.export_text()

    assert "Aider" in text
    assert "awaiting_input" in text
    assert "ps-77" in text
    assert json.loads(json.dumps(summary.to_dict()))["total"] == 1
