"""CLI entry point for the session monitor.

Usage:
    vibebar-monitor                 # refresh every second, redraw a table
    vibebar-monitor --once          # single pass
    vibebar-monitor --once --json   # machine-readable summary
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from vibebar.shared.services.log_setup import configure_logging

from .errors import ConfigError
from .models import ActivityState, GlobalSummary, OverallState
from .monitor import MonitorService
from .yaml_config import load_config

logger = logging.getLogger(__name__)

_STATE_STYLES = {
    "running": "bold green",
    "awaiting_input": "bold yellow",
    "idle": "cyan",
    "unknown": "dim",
    "stopped": "dim",
}


def _state_text(value: ActivityState | OverallState) -> Text:
    return Text(value.value, style=_STATE_STYLES.get(value.value, ""))


def render_summary(summary: GlobalSummary) -> Table:
    """Tabulate the sessions with an overall caption."""
    table = Table(
        title=Text.assemble("VibeBar ", _state_text(summary.overall)),
        caption=", ".join(
            f"{state.value}={n}" for state, n in summary.counts.items() if n
        ) or "no sessions",
    )
    table.add_column("Tool")
    table.add_column("PID", justify="right")
    table.add_column("Status")
    table.add_column("Session")
    table.add_column("CWD", overflow="fold")
    table.add_column("Notes", overflow="fold")
    for session in summary.sessions:
        table.add_row(
            session.tool.display_name,
            str(session.pid),
            _state_text(session.status),
            session.id,
            session.cwd or "",
            session.notes or "",
        )
    return table


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vibebar-monitor",
        description="Show what the CLI coding tools on this machine are doing",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON instead of a table",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between refreshes (default: from config, 1.0)",
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
        print(f"vibebar-monitor: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.interval is not None:
        config.refresh_interval_seconds = args.interval

    configure_logging(
        config.logs_dir / "vibebar-monitor.log",
        "DEBUG" if args.verbose else config.log_level,
        stderr_level=None if args.verbose else "WARNING",
    )

    logger.debug(
        "vibebar-monitor starting app_dir=%s interval=%.1fs",
        config.app_dir, config.refresh_interval_seconds,
    )
    console = Console()
    service = MonitorService(config)

    async def emit(summary: GlobalSummary) -> None:
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2 if args.once else None))
            sys.stdout.flush()
        else:
            if not args.once:
                console.clear()
            console.print(render_summary(summary))

    async def run() -> None:
        if args.once:
            await emit(await service.refresh())
        else:
            await service.run(emit)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
