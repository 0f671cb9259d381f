"""Exception hierarchy for the monitoring engine.

Specific exceptions for each failure mode. CLI entry points map them
onto process exit codes.
"""
from __future__ import annotations


class VibeBarError(Exception):
    """Base exception for all monitoring errors."""


class PtySpawnError(VibeBarError):
    """Failed to allocate a pseudo-terminal or start the wrapped tool."""
    def __init__(self, executable: str, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to spawn {executable}: {reason}")


class AgentStartupError(VibeBarError):
    """The event agent could not bind or listen on its socket."""
    def __init__(self, socket_path: str, reason: str):
        self.socket_path = socket_path
        self.reason = reason
        super().__init__(f"Cannot start agent on {socket_path}: {reason}")


class NotifyDeliveryError(VibeBarError):
    """An event could not be delivered to the agent socket."""
    def __init__(self, socket_path: str, reason: str):
        self.socket_path = socket_path
        self.reason = reason
        super().__init__(
            f"Cannot deliver event to {socket_path}: {reason}"
        )


class EventParseError(VibeBarError):
    """A line received by the agent is not a valid event."""
    def __init__(self, reason: str, line: str = ""):
        self.reason = reason
        self.line = line
        super().__init__(f"Invalid event: {reason}")


class SessionDecodeError(VibeBarError):
    """A stored session envelope cannot be decoded."""
    def __init__(self, reason: str, path: str | None = None):
        self.reason = reason
        self.path = path
        where = f" ({path})" if path else ""
        super().__init__(f"Cannot decode session{where}: {reason}")


class ConfigError(VibeBarError):
    """A configuration value is present but unusable."""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration for {key}: {reason}")
