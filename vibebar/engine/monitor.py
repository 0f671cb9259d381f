"""Refresh cycle combining stored sessions with live detector output."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from vibebar.shared.services.session_store import SessionStore

from .aggregation import build_summary
from .composite import CompositeSessionDetector, build_composite_detector, merge_sessions
from .config import MonitorConfig
from .detectors.support import is_process_alive
from .models import GlobalSummary, SessionSnapshot, utcnow

logger = logging.getLogger(__name__)

SummaryCallback = Callable[[GlobalSummary], Awaitable[None]]


class MonitorService:
    """Produces a GlobalSummary on each refresh.

    Each pass expires idle file sessions, drops sessions whose process is
    gone, runs the enabled detectors and merges everything by channel
    priority. Detector output is never written back to the store.
    """

    def __init__(
        self,
        config: MonitorConfig,
        store: SessionStore | None = None,
        detector: CompositeSessionDetector | None = None,
        is_alive: Callable[[int], bool] = is_process_alive,
    ) -> None:
        self._config = config
        self._store = store or SessionStore(config.sessions_dir)
        self._detector = detector or build_composite_detector(config, self._store)
        self._is_alive = is_alive

    @property
    def store(self) -> SessionStore:
        return self._store

    async def refresh(self, now: datetime | None = None) -> GlobalSummary:
        now = now or utcnow()
        self._store.cleanup_stale_sessions(now, self._config.idle_ttl_seconds)
        stored = self._prune_exited(self._store.load_all(), now)
        detected = await self._detector.detect_sessions()
        enabled = self._config.enabled_tools()
        merged = [s for s in merge_sessions(stored + detected) if s.tool in enabled]
        return build_summary(merged, now)

    def _prune_exited(
        self,
        sessions: list[SessionSnapshot],
        now: datetime,
    ) -> list[SessionSnapshot]:
        live: list[SessionSnapshot] = []
        for session in sessions:
            if session.pid > 0 and not self._is_alive(session.pid):
                age = (now - session.updated_at).total_seconds()
                if age > self._config.exit_grace_seconds:
                    logger.info(
                        "Session %s (pid %d) exited, removing",
                        session.id, session.pid,
                    )
                    self._store.delete(session.id)
                    continue
            live.append(session)
        return live

    async def run(
        self,
        on_summary: SummaryCallback,
        stop: asyncio.Event | None = None,
    ) -> None:
        """Refresh every ``refresh_interval_seconds`` until ``stop`` is set."""
        stop = stop or asyncio.Event()
        interval = max(0.1, self._config.refresh_interval_seconds)
        while not stop.is_set():
            summary = await self.refresh()
            await on_summary(summary)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
