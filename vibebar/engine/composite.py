"""Composite detector: run every enabled channel and dedupe the results.

Several channels can see the same process. Within one ``(tool, pid)``
group the snapshot from the most trusted channel survives; among equal
channels the more complete snapshot wins, then the first one seen.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from vibebar.shared.services.session_store import SessionStore

from .config import MonitorConfig
from .detectors import (
    ClaudeLogDetector,
    CopilotHookDetector,
    CopilotServerDetector,
    GeminiTranscriptDetector,
    OpenCodeHTTPDetector,
    ProcessScanner,
    SessionDetector,
)
from .models import DetectionMethod, SessionSnapshot, ToolKind

logger = logging.getLogger(__name__)

# Id prefix -> trust. Higher wins.
SOURCE_PRIORITIES: tuple[tuple[str, int], ...] = (
    ("opencode-http-", 7),
    ("claude-log-", 6),
    ("copilot-server-", 5),
    ("copilot-hook-", 4),
    ("gemini-transcript-", 3),
    ("plugin-", 2),
    ("wrapper-", 2),
    ("ps-", 1),
)


def source_priority(session_id: str) -> int:
    for prefix, priority in SOURCE_PRIORITIES:
        if session_id.startswith(prefix):
            return priority
    return 0


def completeness_score(session: SessionSnapshot) -> int:
    return int(bool(session.cwd)) + int(session.last_output_at is not None)


def _group_key(session: SessionSnapshot) -> tuple:
    # Sessions without a real pid are distinct by id.
    if session.pid <= 0:
        return ("id", session.id)
    return (session.tool, session.pid)


def merge_sessions(sessions: Iterable[SessionSnapshot]) -> list[SessionSnapshot]:
    """Keep one snapshot per ``(tool, pid)``, preserving first-seen order."""
    best: dict[tuple, SessionSnapshot] = {}
    for session in sessions:
        key = _group_key(session)
        current = best.get(key)
        if current is None:
            best[key] = session
            continue
        rank = (source_priority(session.id), completeness_score(session))
        current_rank = (source_priority(current.id), completeness_score(current))
        if rank > current_rank:
            best[key] = session
    return list(best.values())


class CompositeSessionDetector(SessionDetector):
    """Runs child detectors concurrently and merges their output."""

    detector_name = "composite"

    def __init__(self, detectors: list[SessionDetector]) -> None:
        self._detectors = list(detectors)

    @property
    def detectors(self) -> list[SessionDetector]:
        return list(self._detectors)

    async def _detect(self) -> list[SessionSnapshot]:
        if not self._detectors:
            return []
        results = await asyncio.gather(
            *(d.detect_sessions() for d in self._detectors),
            return_exceptions=True,
        )
        combined: list[SessionSnapshot] = []
        for detector, result in zip(self._detectors, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "%s detector raised: %s", detector.detector_name, result,
                )
                continue
            combined.extend(result)
        return merge_sessions(combined)


def build_composite_detector(
    config: MonitorConfig,
    store: SessionStore,
) -> CompositeSessionDetector:
    """Instantiate the detectors switched on by the tool settings."""
    detectors: list[SessionDetector] = []
    scan_tools = {
        tool for tool, settings in config.tools.items()
        if settings.uses(DetectionMethod.PROCESS_SCAN)
    }
    if scan_tools:
        detectors.append(ProcessScanner(scan_tools))

    def enabled(tool: ToolKind, method: DetectionMethod) -> bool:
        return config.tool_settings(tool).uses(method)

    if enabled(ToolKind.OPENCODE, DetectionMethod.HTTP_API):
        detectors.append(OpenCodeHTTPDetector())
    if enabled(ToolKind.CLAUDE_CODE, DetectionMethod.LOG_FILE):
        detectors.append(ClaudeLogDetector(config.claude_root))
    if enabled(ToolKind.GITHUB_COPILOT, DetectionMethod.JSON_RPC):
        detectors.append(CopilotServerDetector())
    if enabled(ToolKind.GITHUB_COPILOT, DetectionMethod.HOOK_FILE):
        detectors.append(CopilotHookDetector(config.copilot_hook_dir))
    if enabled(ToolKind.GEMINI, DetectionMethod.TRANSCRIPT_FILE):
        detectors.append(GeminiTranscriptDetector(store))

    logger.debug(
        "Composite detector built with: %s",
        ", ".join(d.detector_name for d in detectors) or "none",
    )
    return CompositeSessionDetector(detectors)
