"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via VIBEBAR_* env vars or
``<app dir>/config.yaml`` (see yaml_config.py). Env vars win over YAML.
"""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import ConfigError
from .models import DetectionMethod, ToolKind

logger = logging.getLogger(__name__)


def default_app_dir() -> Path:
    """Per-user state directory for sessions, sockets and logs."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "VibeBar"
    xdg = os.getenv("XDG_STATE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "state"
    return base / "vibebar"


# Channels each tool supports, in default order.
SUPPORTED_METHODS: dict[ToolKind, tuple[DetectionMethod, ...]] = {
    ToolKind.CLAUDE_CODE: (DetectionMethod.LOG_FILE, DetectionMethod.PROCESS_SCAN),
    ToolKind.CODEX: (DetectionMethod.PROCESS_SCAN,),
    ToolKind.OPENCODE: (DetectionMethod.HTTP_API, DetectionMethod.PROCESS_SCAN),
    ToolKind.GITHUB_COPILOT: (
        DetectionMethod.JSON_RPC,
        DetectionMethod.HOOK_FILE,
        DetectionMethod.PROCESS_SCAN,
    ),
    ToolKind.AIDER: (DetectionMethod.PROCESS_SCAN,),
    ToolKind.GEMINI: (DetectionMethod.TRANSCRIPT_FILE, DetectionMethod.PROCESS_SCAN),
}


@dataclass
class ToolSettings:
    """Per-tool switches."""
    enabled: bool = True
    detection_methods: list[DetectionMethod] = field(default_factory=list)

    def uses(self, method: DetectionMethod) -> bool:
        return self.enabled and method in self.detection_methods


def default_tool_settings() -> dict[ToolKind, ToolSettings]:
    return {
        tool: ToolSettings(detection_methods=list(methods))
        for tool, methods in SUPPORTED_METHODS.items()
    }


@dataclass
class PromptThresholds:
    """Tunables for the wrapper's prompt-detection state machine."""
    # Rolling window of sanitized output matched against prompt patterns.
    window_chars: int = 512
    # After input on a latched prompt, elapsed time and output volume
    # that together count as the tool resuming work.
    resume_probe_seconds: float = 2.5
    resume_probe_min_chars: int = 80
    # Output newer than this keeps the session RUNNING.
    running_lag_seconds: float = 0.8


@dataclass
class MonitorConfig:
    """Monitoring configuration shared by the wrapper, agent and monitor."""

    app_dir: Path = field(default_factory=default_app_dir)
    home_dir: Path = field(default_factory=Path.home)
    # Explicit socket path; defaults to <runtime dir>/agent.sock.
    agent_socket: Path | None = None

    # Interval for plugin heartbeats re-sending the last state.
    # 0 disables repetition.
    plugin_heartbeat_ms: int = 15000

    # Logging
    log_level: str = "INFO"

    # Cooperative sessions not updated for this long are removed unless
    # they are running or awaiting input.
    idle_ttl_seconds: float = 1800.0
    refresh_interval_seconds: float = 1.0
    # A file session whose process vanished is kept this long before
    # deletion, so a just-started session is not dropped.
    exit_grace_seconds: float = 2.0
    # Minimum spacing between wrapper snapshot writes.
    persist_interval_seconds: float = 0.5

    prompt: PromptThresholds = field(default_factory=PromptThresholds)
    tools: dict[ToolKind, ToolSettings] = field(
        default_factory=default_tool_settings,
    )

    @property
    def sessions_dir(self) -> Path:
        return self.app_dir / "sessions"

    @property
    def runtime_dir(self) -> Path:
        return self.app_dir / "runtime"

    @property
    def logs_dir(self) -> Path:
        return self.app_dir / "logs"

    @property
    def config_path(self) -> Path:
        return self.app_dir / "config.yaml"

    @property
    def agent_socket_path(self) -> Path:
        return self.agent_socket or self.runtime_dir / "agent.sock"

    @property
    def claude_root(self) -> Path:
        return self.home_dir / ".claude"

    @property
    def copilot_hook_dir(self) -> Path:
        return self.home_dir / ".copilot" / "vibebar"

    def tool_settings(self, tool: ToolKind) -> ToolSettings:
        return self.tools.get(tool) or ToolSettings(enabled=False)

    def enabled_tools(self) -> set[ToolKind]:
        return {tool for tool, s in self.tools.items() if s.enabled}

    @classmethod
    def from_env(cls, base: MonitorConfig | None = None) -> MonitorConfig:
        """Apply VIBEBAR_* environment overrides on top of ``base``."""
        config = replace(base) if base is not None else cls()

        vibebar_vars = {
            k: v for k, v in os.environ.items() if k.startswith("VIBEBAR_")
        }
        if vibebar_vars:
            logger.debug(
                "MonitorConfig.from_env: VIBEBAR_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(vibebar_vars.items())),
            )

        home = os.getenv("VIBEBAR_HOME")
        if home:
            config.app_dir = Path(home).expanduser()
        socket_path = os.getenv("VIBEBAR_AGENT_SOCKET")
        if socket_path:
            config.agent_socket = Path(socket_path).expanduser()

        config.plugin_heartbeat_ms = _env_number(
            "VIBEBAR_PLUGIN_HEARTBEAT_MS", config.plugin_heartbeat_ms, int,
        )
        config.log_level = os.getenv(
            "VIBEBAR_LOG_LEVEL", config.log_level,
        ).upper()
        config.idle_ttl_seconds = _env_number(
            "VIBEBAR_IDLE_TTL", config.idle_ttl_seconds, float,
        )
        config.refresh_interval_seconds = _env_number(
            "VIBEBAR_REFRESH_INTERVAL", config.refresh_interval_seconds, float,
        )
        config.prompt = replace(
            config.prompt,
            window_chars=_env_number(
                "VIBEBAR_PROMPT_WINDOW", config.prompt.window_chars, int,
            ),
            resume_probe_seconds=_env_number(
                "VIBEBAR_RESUME_PROBE_SECONDS",
                config.prompt.resume_probe_seconds, float,
            ),
            resume_probe_min_chars=_env_number(
                "VIBEBAR_RESUME_PROBE_MIN_CHARS",
                config.prompt.resume_probe_min_chars, int,
            ),
            running_lag_seconds=_env_number(
                "VIBEBAR_RUNNING_LAG_SECONDS",
                config.prompt.running_lag_seconds, float,
            ),
        )
        if config.plugin_heartbeat_ms < 0:
            raise ConfigError(
                "VIBEBAR_PLUGIN_HEARTBEAT_MS", "must not be negative",
            )
        return config


def _env_number(name: str, default, kind):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(name, f"expected {kind.__name__}, got {raw!r}") from exc
