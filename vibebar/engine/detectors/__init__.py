"""Session detectors, from the process-table fallback to per-tool probes."""

from .base import SessionDetector
from .claude_log import ClaudeLogDetector
from .copilot_hook import CopilotHookDetector
from .copilot_server import CopilotServerDetector
from .gemini_transcript import GeminiTranscriptDetector
from .opencode_http import OpenCodeHTTPDetector
from .process_scanner import ProcessScanner

__all__ = [
    "SessionDetector",
    "ClaudeLogDetector",
    "CopilotHookDetector",
    "CopilotServerDetector",
    "GeminiTranscriptDetector",
    "OpenCodeHTTPDetector",
    "ProcessScanner",
]
