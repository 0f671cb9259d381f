"""Fold the live session set into per-tool and global summaries."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from .models import (
    ActivityState,
    GlobalSummary,
    OverallState,
    SessionSnapshot,
    ToolKind,
    ToolSummary,
    utcnow,
)

# Highest-precedence state first.
_PRECEDENCE: tuple[tuple[ActivityState, OverallState], ...] = (
    (ActivityState.RUNNING, OverallState.RUNNING),
    (ActivityState.AWAITING_INPUT, OverallState.AWAITING_INPUT),
    (ActivityState.IDLE, OverallState.IDLE),
    (ActivityState.UNKNOWN, OverallState.UNKNOWN),
)


def sort_sessions(sessions: Iterable[SessionSnapshot]) -> list[SessionSnapshot]:
    """Most recently updated first; equal timestamps by ascending pid."""
    return sorted(sessions, key=lambda s: (-s.updated_at.timestamp(), s.pid))


def overall_state(counts: dict[ActivityState, int]) -> OverallState:
    for state, overall in _PRECEDENCE:
        if counts.get(state, 0) > 0:
            return overall
    return OverallState.STOPPED


def _empty_counts() -> dict[ActivityState, int]:
    return {state: 0 for state in ActivityState}


def build_summary(
    sessions: Iterable[SessionSnapshot],
    now: datetime | None = None,
) -> GlobalSummary:
    ordered = sort_sessions(sessions)
    by_tool = {tool: ToolSummary(tool=tool) for tool in ToolKind}
    for session in ordered:
        summary = by_tool[session.tool]
        summary.total += 1
        summary.counts[session.status] += 1
    for summary in by_tool.values():
        summary.overall = overall_state(summary.counts)

    counts = _empty_counts()
    for summary in by_tool.values():
        for state, n in summary.counts.items():
            counts[state] += n

    return GlobalSummary(
        total=len(ordered),
        counts=counts,
        overall=overall_state(counts),
        by_tool=by_tool,
        sessions=ordered,
        updated_at=now or utcnow(),
    )
