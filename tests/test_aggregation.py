from __future__ import annotations

from datetime import datetime, timedelta, timezone

from vibebar.engine import (
    ActivityState,
    OverallState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    build_summary,
    overall_state,
    sort_sessions,
)

T = datetime(2026, 2, 10, 8, 0, 0, tzinfo=timezone.utc)


def _session(pid: int, *, at: datetime = T, tool=ToolKind.CODEX, status=ActivityState.IDLE) -> SessionSnapshot:
    return SessionSnapshot(
        id=f"ps-{pid}",
        tool=tool,
        pid=pid,
        status=status,
        source=SessionSource.PROCESS_SCAN,
        started_at=at,
        updated_at=at,
    )


def test_sort_newest_first_then_by_pid() -> None:
    ordered = sort_sessions([
        _session(200),
        _session(100),
        _session(50, at=T + timedelta(seconds=5)),
    ])
    assert [s.pid for s in ordered] == [50, 100, 200]


def test_overall_precedence() -> None:
    assert overall_state({ActivityState.IDLE: 2, ActivityState.RUNNING: 1}) is OverallState.RUNNING
    assert overall_state({ActivityState.IDLE: 1, ActivityState.AWAITING_INPUT: 1}) is OverallState.AWAITING_INPUT
    assert overall_state({ActivityState.UNKNOWN: 3, ActivityState.IDLE: 1}) is OverallState.IDLE
    assert overall_state({ActivityState.UNKNOWN: 1}) is OverallState.UNKNOWN
    assert overall_state({}) is OverallState.STOPPED


def test_empty_summary_is_stopped_with_every_tool_listed() -> None:
    summary = build_summary([], now=T)

    assert summary.total == 0
    assert summary.overall is OverallState.STOPPED
    assert set(summary.by_tool) == set(ToolKind)
    assert all(t.overall is OverallState.STOPPED for t in summary.by_tool.values())
    assert summary.updated_at == T


def test_summary_counts_per_tool_and_globally() -> None:
    sessions = [
        _session(1, status=ActivityState.IDLE),
        _session(2, status=ActivityState.RUNNING),
        _session(3, tool=ToolKind.AIDER, status=ActivityState.AWAITING_INPUT),
        _session(4, tool=ToolKind.AIDER, status=ActivityState.IDLE),
    ]

    summary = build_summary(sessions, now=T)

    assert summary.total == 4
    assert summary.counts[ActivityState.IDLE] == 2
    assert summary.overall is OverallState.RUNNING
    codex = summary.by_tool[ToolKind.CODEX]
    assert (codex.total, codex.overall) == (2, OverallState.RUNNING)
    aider = summary.by_tool[ToolKind.AIDER]
    assert (aider.total, aider.overall) == (2, OverallState.AWAITING_INPUT)
    assert summary.by_tool[ToolKind.GEMINI].total == 0
    assert sum(t.total for t in summary.by_tool.values()) == summary.total


def test_summary_to_dict_uses_wire_names() -> None:
    payload = build_summary([_session(9, status=ActivityState.RUNNING)], now=T).to_dict()

    assert payload["overall"] == "running"
    assert payload["byTool"]["codex"]["counts"]["running"] == 1
    assert payload["updatedAt"] == "2026-02-10T08:00:00.000Z"
    assert payload["sessions"][0]["id"] == "ps-9"
