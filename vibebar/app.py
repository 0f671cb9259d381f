"""VibeBar CLI: wrap a coding tool, or report hook events to the agent.

Usage:
    vibebar <claude|codex|opencode|aider|gemini|copilot> [--] [args...]
    vibebar notify <tool> <state> [--heartbeat] [key=value...]
    vibebar hook <claude|copilot> <hook-event>
    vibebar --version | --help
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version as dist_version

from vibebar.agent.client import send_events
from vibebar.agent.hooks import build_claude_event, parse_hook_payload, write_copilot_state
from vibebar.agent.notify import STATE_WORDS, build_notify_event, heartbeat
from vibebar.engine.config import MonitorConfig
from vibebar.engine.errors import ConfigError, NotifyDeliveryError, VibeBarError
from vibebar.engine.models import ToolKind
from vibebar.engine.yaml_config import load_config
from vibebar.shared.services.log_setup import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_NOTIFY_FAILED = 3

USAGE = """\
usage:
  vibebar <claude|codex|opencode|aider|gemini|copilot> [--] [args...]
  vibebar notify <tool> <state> [--heartbeat] [key=value...]
  vibebar hook <claude|copilot> <hook-event>
  vibebar --version
  vibebar --help

states: running, awaiting_input, idle, unknown, start, end
        (and tool hook names such as session_start, before_tool)

examples:
  vibebar claude
  vibebar codex -- --model gpt-5-codex
  vibebar gemini -p "explain this repo"
  vibebar notify aider awaiting_input
  vibebar notify gemini session_start session_id=abc123 hook_event_name=SessionStart
"""


def wrapper_version(config: MonitorConfig | None = None) -> str:
    """Installed version: the pinned version file, package metadata, or dev."""
    if config is not None:
        version_file = config.app_dir / "bin" / "vibebar.version"
        try:
            pinned = version_file.read_text(encoding="utf-8").strip()
        except OSError:
            pinned = ""
        if pinned:
            return pinned
    try:
        return dist_version("vibebar")
    except PackageNotFoundError:
        return "dev"


def _usage_error(message: str | None = None) -> int:
    if message:
        print(f"vibebar: {message}", file=sys.stderr)
    print(USAGE, file=sys.stderr, end="")
    return EXIT_USAGE


def _notify_command(argv: list[str], config: MonitorConfig) -> int:
    parser = argparse.ArgumentParser(
        prog="vibebar notify",
        description="Send a one-shot status event to the VibeBar agent",
    )
    parser.add_argument("tool", help="Tool name (claude, aider, gemini, ...)")
    parser.add_argument("state", help="One of: " + ", ".join(STATE_WORDS))
    parser.add_argument(
        "metadata",
        nargs="*",
        help="key=value pairs; session_id and hook_event_name are special",
    )
    parser.add_argument(
        "--heartbeat",
        action="store_true",
        help="Repeat the event until the calling tool exits",
    )
    args = parser.parse_intermixed_args(argv)

    tool = ToolKind.from_cli_argument(args.tool)
    if tool is None:
        return _usage_error(f"unknown tool {args.tool!r}")
    event = build_notify_event(tool, args.state, args.metadata)
    if event is None:
        return _usage_error(f"unknown state {args.state!r}")

    socket_path = config.agent_socket_path
    try:
        if args.heartbeat and event.status is not None:
            asyncio.run(heartbeat(
                socket_path, event, config.plugin_heartbeat_ms,
                watch_pid=event.pid,
            ))
        else:
            asyncio.run(send_events(socket_path, [event]))
    except NotifyDeliveryError as exc:
        logger.warning("%s", exc)
        print(f"vibebar: cannot notify agent at {socket_path}", file=sys.stderr)
        return EXIT_NOTIFY_FAILED
    except KeyboardInterrupt:
        pass
    return EXIT_OK


def _hook_command(argv: list[str], config: MonitorConfig) -> int:
    parser = argparse.ArgumentParser(
        prog="vibebar hook",
        description="Adapter for tool hook scripts (reads hook JSON on stdin)",
    )
    parser.add_argument("tool", choices=("claude", "copilot"))
    parser.add_argument("event", nargs="?", default="Unknown")
    args = parser.parse_args(argv)

    raw = "" if sys.stdin.isatty() else sys.stdin.read()
    payload = parse_hook_payload(raw)

    if args.tool == "copilot":
        try:
            write_copilot_state(config.copilot_hook_dir, args.event, payload)
        except OSError as exc:
            logger.warning("Cannot update Copilot hook state: %s", exc)
        return EXIT_OK

    event = build_claude_event(args.event, payload)
    try:
        asyncio.run(send_events(config.agent_socket_path, [event]))
    except NotifyDeliveryError as exc:
        # Hooks must never fail the tool that runs them.
        logger.debug("%s", exc)
    return EXIT_OK


def _wrap_command(tool: ToolKind, passthrough: list[str], config: MonitorConfig) -> int:
    from vibebar.wrapper.runner import WrapperRunner

    runner = WrapperRunner(tool, passthrough, config)
    try:
        return runner.run()
    except (VibeBarError, OSError) as exc:
        logger.error("Wrapper failed: %s", exc)
        print(f"vibebar: {exc}", file=sys.stderr)
        return EXIT_FAILURE


def run_cli(argv: list[str]) -> int:
    if not argv:
        return _usage_error()
    head = argv[0]
    if head in ("--help", "-h", "help"):
        print(USAGE, end="")
        return EXIT_OK

    try:
        config = load_config()
    except ConfigError as exc:
        print(f"vibebar: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if head in ("--version", "-v", "version"):
        print(wrapper_version(config))
        return EXIT_OK

    log_file = config.logs_dir / "vibebar.log"
    if head == "notify":
        configure_logging(log_file, config.log_level, stderr_level="WARNING")
        return _notify_command(argv[1:], config)
    if head == "hook":
        configure_logging(log_file, config.log_level, stderr_level="OFF")
        return _hook_command(argv[1:], config)

    tool = ToolKind.from_cli_argument(head)
    if tool is None:
        return _usage_error(f"unknown tool {head!r}")
    rest = argv[1:]
    if rest and rest[0] == "--":
        rest = rest[1:]
    # Nothing but the wrapped tool may write to the terminal.
    configure_logging(log_file, config.log_level, stderr_level="OFF")
    logger.debug("vibebar %s cwd=%s args=%s", tool.value, os.getcwd(), rest)
    return _wrap_command(tool, rest, config)


def main() -> None:
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
