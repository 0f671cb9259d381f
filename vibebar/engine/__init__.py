"""VibeBar engine: session models, detection, merging and aggregation."""
from .models import (
    ActivityState,
    DetectionMethod,
    GlobalSummary,
    OverallState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    ToolSummary,
)
from .config import MonitorConfig, PromptThresholds, ToolSettings
from .aggregation import build_summary, overall_state, sort_sessions
from .errors import (
    AgentStartupError,
    ConfigError,
    EventParseError,
    NotifyDeliveryError,
    PtySpawnError,
    SessionDecodeError,
    VibeBarError,
)

__all__ = [
    "ActivityState",
    "AgentStartupError",
    "ConfigError",
    "DetectionMethod",
    "EventParseError",
    "GlobalSummary",
    "MonitorConfig",
    "NotifyDeliveryError",
    "OverallState",
    "PromptThresholds",
    "PtySpawnError",
    "SessionDecodeError",
    "SessionSnapshot",
    "SessionSource",
    "ToolKind",
    "ToolSettings",
    "ToolSummary",
    "VibeBarError",
    "build_summary",
    "overall_state",
    "sort_sessions",
]
