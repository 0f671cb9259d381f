"""Client side of the agent socket: fire-and-forget event delivery."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from vibebar.engine.errors import NotifyDeliveryError

from .events import AgentEvent

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 1.5


async def send_events(
    socket_path: Path,
    events: Iterable[AgentEvent],
    timeout: float = SEND_TIMEOUT_SECONDS,
) -> None:
    """Write events as NDJSON and close. Raises NotifyDeliveryError."""
    payload = "".join(event.to_json_line() for event in events).encode("utf-8")
    if not payload:
        return

    async def _deliver() -> None:
        _, writer = await asyncio.open_unix_connection(str(socket_path))
        try:
            writer.write(payload)
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()
        finally:
            writer.close()
            await writer.wait_closed()

    try:
        await asyncio.wait_for(_deliver(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise NotifyDeliveryError(str(socket_path), f"timed out after {timeout}s") from exc
    except OSError as exc:
        raise NotifyDeliveryError(str(socket_path), str(exc) or type(exc).__name__) from exc
    logger.debug("Delivered %d byte(s) to %s", len(payload), socket_path)
