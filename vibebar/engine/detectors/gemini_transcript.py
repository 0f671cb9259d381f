"""Gemini CLI detector reading the chat transcript the CLI keeps on disk.

Gemini hooks report the transcript path (``transcript=<path>`` in the
session notes); a running gemini process is matched to the newest
transcript recorded for its working directory.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from vibebar.shared.services.session_store import SessionStore

from ..models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    parse_timestamp,
    utcnow,
)
from .base import SessionDetector
from .process_scanner import classify_process
from .support import bulk_get_cwds, list_processes

logger = logging.getLogger(__name__)

FRESHNESS_SECONDS = 2.5


def transcript_paths_from_notes(notes: str | None) -> list[str]:
    if not notes:
        return []
    paths: list[str] = []
    for token in notes.split("|"):
        token = token.strip()
        if token.startswith("transcript="):
            value = token[len("transcript="):].strip()
            if value:
                paths.append(value)
    return paths


def _cwd_from_transcript_path(path: str) -> str | None:
    marker = "/.gemini/"
    index = path.find(marker)
    if index <= 0:
        return None
    return path[:index]


def collect_transcript_hints(sessions: list[SessionSnapshot]) -> dict[str, str]:
    """Newest transcript path per working directory from Gemini plugin sessions."""
    newest: dict[str, tuple[datetime, str]] = {}
    for session in sessions:
        if session.tool is not ToolKind.GEMINI or session.source is not SessionSource.PLUGIN:
            continue
        for path in transcript_paths_from_notes(session.notes):
            cwd = session.cwd or _cwd_from_transcript_path(path)
            if not cwd:
                continue
            current = newest.get(cwd)
            if current is None or session.updated_at >= current[0]:
                newest[cwd] = (session.updated_at, path)
    return {cwd: path for cwd, (_, path) in newest.items()}


def analyze_transcript(
    data: Any,
    now: datetime,
) -> tuple[ActivityState, datetime | None, datetime | None]:
    """Return ``(status, last_output_at, last_input_at)`` for a transcript."""
    if not isinstance(data, dict):
        return ActivityState.UNKNOWN, None, None
    stamps = [
        ts for ts in (
            parse_timestamp(data.get("lastUpdated")),
            parse_timestamp(data.get("startTime")),
        ) if ts is not None
    ]
    last_type: str | None = None
    last_output: datetime | None = None
    last_input: datetime | None = None
    messages = data.get("messages")
    if isinstance(messages, list):
        for message in messages:
            if not isinstance(message, dict):
                continue
            kind = message.get("type")
            if kind not in ("gemini", "user"):
                continue
            last_type = kind
            ts = parse_timestamp(message.get("timestamp"))
            if ts is None:
                continue
            stamps.append(ts)
            if kind == "gemini":
                last_output = ts
            else:
                last_input = ts

    freshest = max(stamps) if stamps else None
    if freshest is not None and now - freshest < timedelta(seconds=FRESHNESS_SECONDS):
        status = ActivityState.RUNNING
    elif last_type == "user":
        status = ActivityState.AWAITING_INPUT
    else:
        status = ActivityState.IDLE
    return status, last_output, last_input


class GeminiTranscriptDetector(SessionDetector):
    """Reads Gemini transcripts for gemini processes with a known cwd."""

    detector_name = "gemini_transcript"

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    async def _detect(self) -> list[SessionSnapshot]:
        processes = [
            p for p in await list_processes()
            if classify_process(p) is ToolKind.GEMINI
        ]
        if not processes:
            return []
        hints = collect_transcript_hints(self._store.load_all())
        if not hints:
            return []
        cwds = await bulk_get_cwds([p.pid for p in processes])
        now = utcnow()
        snapshots: list[SessionSnapshot] = []
        for proc in processes:
            cwd = cwds.get(proc.pid)
            transcript = hints.get(cwd) if cwd else None
            if transcript is None:
                continue
            try:
                data = json.loads(Path(transcript).read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.debug("Cannot read Gemini transcript %s: %s", transcript, exc)
                continue
            status, last_output, last_input = analyze_transcript(data, now)
            snapshots.append(SessionSnapshot(
                id=f"gemini-transcript-{proc.pid}",
                tool=ToolKind.GEMINI,
                pid=proc.pid,
                parent_pid=proc.ppid,
                status=status,
                source=SessionSource.PROCESS_SCAN,
                started_at=now,
                updated_at=now,
                last_output_at=last_output,
                last_input_at=last_input,
                cwd=cwd,
                command=proc.argv,
                notes=f"transcript={transcript}",
            ))
        return snapshots
