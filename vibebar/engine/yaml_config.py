"""YAML configuration for the monitor.

Loads ``<app dir>/config.yaml`` and folds it into a MonitorConfig.
Environment variables still take precedence over file values.

Example::

    monitor:
      idle_ttl_seconds: 1800
      refresh_interval_seconds: 1.0
      exit_grace_seconds: 2.0
    wrapper:
      persist_interval_seconds: 0.5
      resume_probe_seconds: 2.5
    tools:
      opencode:
        enabled: true
        detection_methods: [http_api, process_scan]
      codex:
        enabled: false
"""
from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import (
    SUPPORTED_METHODS,
    MonitorConfig,
    ToolSettings,
    default_app_dir,
    default_tool_settings,
)
from .models import DetectionMethod, ToolKind

logger = logging.getLogger(__name__)

_MONITOR_KEYS = (
    "idle_ttl_seconds",
    "refresh_interval_seconds",
    "exit_grace_seconds",
    "plugin_heartbeat_ms",
    "log_level",
)
_PROMPT_KEYS = (
    "window_chars",
    "resume_probe_seconds",
    "resume_probe_min_chars",
    "running_lag_seconds",
)


def _load_config_yaml(path: Path) -> dict:
    """Load the YAML file, returning ``{}`` when absent or unreadable."""
    logger.debug(
        "_load_config_yaml: checking %s (exists=%s)", path, path.is_file(),
    )
    if not path.is_file():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.warning("_load_config_yaml: YAML parse error in %s: %s", path, exc)
        return {}
    except OSError as exc:
        logger.warning("_load_config_yaml: cannot read %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "_load_config_yaml: %s does not contain a mapping, ignoring", path,
        )
        return {}
    logger.info(
        "_load_config_yaml: loaded %s (sections: %s)",
        path, ", ".join(sorted(str(k) for k in data)) or "empty",
    )
    return data


def _parse_tool_settings(raw: Any) -> dict[ToolKind, ToolSettings]:
    tools = default_tool_settings()
    if not isinstance(raw, dict):
        return tools
    for name, entry in raw.items():
        tool = ToolKind.from_cli_argument(str(name))
        if tool is None:
            logger.warning("Unknown tool %r in config, ignoring", name)
            continue
        if not isinstance(entry, dict):
            continue
        settings = tools[tool]
        if "enabled" in entry:
            settings.enabled = bool(entry["enabled"])
        methods = entry.get("detection_methods")
        if isinstance(methods, list):
            settings.detection_methods = _parse_methods(tool, methods)
    return tools


def _parse_methods(tool: ToolKind, values: list) -> list[DetectionMethod]:
    supported = SUPPORTED_METHODS[tool]
    result: list[DetectionMethod] = []
    for value in values:
        try:
            method = DetectionMethod(str(value).strip().lower())
        except ValueError:
            logger.warning("Unknown detection method %r for %s", value, tool.value)
            continue
        if method not in supported:
            logger.warning(
                "Detection method %s is not supported for %s, dropping",
                method.value, tool.value,
            )
            continue
        if method not in result:
            result.append(method)
    return result


def config_from_yaml(data: dict, app_dir: Path | None = None) -> MonitorConfig:
    """Build a MonitorConfig from a parsed YAML mapping."""
    config = MonitorConfig()
    if app_dir is not None:
        config.app_dir = app_dir

    monitor = data.get("monitor") or {}
    if isinstance(monitor, dict):
        for key in _MONITOR_KEYS:
            if key in monitor:
                current = getattr(config, key)
                try:
                    setattr(config, key, type(current)(monitor[key]))
                except (TypeError, ValueError):
                    logger.warning(
                        "Invalid value for monitor.%s: %r", key, monitor[key],
                    )

    wrapper = data.get("wrapper") or {}
    if isinstance(wrapper, dict):
        if "persist_interval_seconds" in wrapper:
            try:
                config.persist_interval_seconds = float(
                    wrapper["persist_interval_seconds"]
                )
            except (TypeError, ValueError):
                logger.warning(
                    "Invalid value for wrapper.persist_interval_seconds: %r",
                    wrapper["persist_interval_seconds"],
                )
        overrides: dict[str, Any] = {}
        for key in _PROMPT_KEYS:
            if key in wrapper:
                current = getattr(config.prompt, key)
                try:
                    overrides[key] = type(current)(wrapper[key])
                except (TypeError, ValueError):
                    logger.warning(
                        "Invalid value for wrapper.%s: %r", key, wrapper[key],
                    )
        if overrides:
            config.prompt = replace(config.prompt, **overrides)

    config.tools = _parse_tool_settings(data.get("tools"))
    return config


def load_config(app_dir: Path | None = None) -> MonitorConfig:
    """Resolve the full configuration: defaults, then YAML, then env."""
    if app_dir is None:
        home = os.getenv("VIBEBAR_HOME")
        app_dir = Path(home).expanduser() if home else default_app_dir()
    data = _load_config_yaml(MonitorConfig(app_dir=app_dir).config_path)
    return MonitorConfig.from_env(config_from_yaml(data, app_dir=app_dir))
