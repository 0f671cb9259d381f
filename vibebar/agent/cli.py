"""CLI entry point for the event agent.

Usage:
    vibebar-agent [--socket-path PATH] [--verbose]
    vibebar-agent --print-socket-path
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from vibebar.engine.errors import AgentStartupError, ConfigError
from vibebar.engine.yaml_config import load_config
from vibebar.shared.services.log_setup import configure_logging
from vibebar.shared.services.session_store import SessionStore

from .server import AgentServer

logger = logging.getLogger(__name__)


async def _serve(server: AgentServer) -> None:
    await server.start()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    try:
        await stop.wait()
    finally:
        await server.stop()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vibebar-agent",
        description="Receive tool plugin events and maintain session files",
    )
    parser.add_argument(
        "--socket-path",
        default=None,
        help="Unix socket to listen on (default: <app dir>/runtime/agent.sock)",
    )
    parser.add_argument(
        "--print-socket-path",
        action="store_true",
        help="Print the resolved socket path and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    try:
        config = load_config()
    except ConfigError as exc:
        print(f"vibebar-agent: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.socket_path:
        config.agent_socket = Path(args.socket_path).expanduser()

    if args.print_socket_path:
        print(config.agent_socket_path)
        sys.exit(0)

    signal.signal(signal.SIGPIPE, signal.SIG_IGN)
    configure_logging(
        config.logs_dir / "vibebar-agent.log",
        "DEBUG" if args.verbose else config.log_level,
    )
    logger.info(
        "Starting agent socket=%s sessions=%s",
        config.agent_socket_path, config.sessions_dir,
    )

    server = AgentServer(config.agent_socket_path, SessionStore(config.sessions_dir))
    try:
        asyncio.run(_serve(server))
    except AgentStartupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
