"""Prompt detection for the terminal wrapper.

Terminal output is classified by per-tool regular expressions into
"waiting for the user" and "working again" signals. The state machine
latches AWAITING_INPUT on a prompt and only releases it once output after
the user's reply looks like work has resumed:

    (any) ──prompt in window──> LATCHED
    LATCHED ──user input──> LATCHED + PROBING
    PROBING ──resume text, or probe time elapsed with enough output──> UNLATCHED

While unlatched, recent output means RUNNING and silence means IDLE.
"""
from __future__ import annotations

import re
import time
from collections.abc import Callable
from enum import Enum

from vibebar.engine.config import PromptThresholds
from vibebar.engine.models import ActivityState, ToolKind


class PromptSignal(str, Enum):
    AWAITING = "awaiting"
    RESUMED = "resumed"
    NONE = "none"


_COMMON_RESUME = (
    r"(thinking|exploring|analyz|running|execut|processing|searching"
    r"|writing|updating|completed|done|tool use)"
)

_PATTERNS: dict[ToolKind, tuple[str, str]] = {
    ToolKind.CLAUDE_CODE: (
        r"(y/n|yes/no|press enter|allow|approve|permission|continue\?"
        r"|do you want to|select an option|1\.\s*yes|2\.\s*yes|3\.\s*no)",
        _COMMON_RESUME,
    ),
    ToolKind.CODEX: (
        r"(y/n|yes/no|press enter|approval|allow|confirm|continue\?|select an option)",
        _COMMON_RESUME,
    ),
    ToolKind.OPENCODE: (
        r"(y/n|yes/no|press enter|confirm|select|choose|continue\?|select an option)",
        _COMMON_RESUME,
    ),
    ToolKind.AIDER: (
        r"(y/n|yes/no|press enter|continue\?|run this command\?|is this ok\?"
        r"|apply.*\?|proceed\?)",
        r"(thinking|analyz|running|execut|processing|searching|writing"
        r"|updating|completed|done|tokens)",
    ),
    ToolKind.GEMINI: (
        r"(y/n|yes/no|press enter|allow|approve|permission|continue\?"
        r"|proceed\?|tool permission|action required)",
        r"(thinking|planning|running|execut|processing|searching|writing"
        r"|updating|tool|result|done)",
    ),
    ToolKind.GITHUB_COPILOT: (
        r"(y/n|yes/no|press enter|select an option|run this command|revise"
        r"|explain|continue\?|confirm)",
        r"(thinking|analyzing|searching|writing|running|execut|processing"
        r"|updating|completed|done|suggesting)",
    ),
}


class RegexPromptClassifier:
    """Classifies sanitized terminal text with an await and a resume regex."""

    def __init__(self, awaiting: str, resume: str) -> None:
        self._awaiting = re.compile(awaiting, re.IGNORECASE)
        self._resume = re.compile(resume, re.IGNORECASE)

    @classmethod
    def for_tool(cls, tool: ToolKind) -> RegexPromptClassifier:
        awaiting, resume = _PATTERNS[tool]
        return cls(awaiting, resume)

    def classify(self, text: str) -> PromptSignal:
        if self._awaiting.search(text):
            return PromptSignal.AWAITING
        if self._resume.search(text):
            return PromptSignal.RESUMED
        return PromptSignal.NONE


class PromptStateMachine:
    """Tracks the coarse activity state of one wrapped tool.

    Timestamps come from ``clock`` (monotonic seconds) unless passed in.
    """

    def __init__(
        self,
        classifier: RegexPromptClassifier,
        thresholds: PromptThresholds | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._classifier = classifier
        self._limits = thresholds or PromptThresholds()
        self._clock = clock
        self.window = ""
        self.latched = False
        self.probe_pending = False
        self.probe_started: float | None = None
        self.probe_chars = 0
        self.last_output: float = clock()
        self.last_input: float | None = None

    def _cancel_probe(self) -> None:
        self.probe_pending = False
        self.probe_started = None
        self.probe_chars = 0

    def on_input(self, now: float | None = None) -> None:
        """The user typed something into the tool."""
        now = self._clock() if now is None else now
        self.last_input = now
        if self.latched:
            self.probe_pending = True
            self.probe_started = now
            self.probe_chars = 0
        self.window = ""

    def on_output(self, text: str, now: float | None = None) -> None:
        """Feed sanitized output from the tool."""
        now = self._clock() if now is None else now
        self.last_output = now
        if not text:
            return
        self.window += text
        limit = self._limits.window_chars
        if len(self.window) > limit:
            self.window = self.window[-limit:]

        if self._classifier.classify(self.window) is PromptSignal.AWAITING:
            self.latched = True
            self._cancel_probe()
            return

        if self.latched and self.probe_pending:
            self.probe_chars += len(text)
            elapsed = now - self.probe_started if self.probe_started is not None else 0.0
            resumed = (
                self._classifier.classify(text) is PromptSignal.RESUMED
                or self._classifier.classify(self.window) is PromptSignal.RESUMED
            )
            probe_done = (
                elapsed >= self._limits.resume_probe_seconds
                and self.probe_chars >= self._limits.resume_probe_min_chars
            )
            if resumed or probe_done:
                self.latched = False
                self._cancel_probe()

    def state(self, now: float | None = None) -> ActivityState:
        now = self._clock() if now is None else now
        if self.latched:
            return ActivityState.AWAITING_INPUT
        if now - self.last_output < self._limits.running_lag_seconds:
            return ActivityState.RUNNING
        return ActivityState.IDLE
