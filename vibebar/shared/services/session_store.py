"""Session store: one JSON envelope per session on disk.

Storage layout:
    <app dir>/sessions/{session_id}.json

Every channel that owns a session (wrapper, event agent) writes its own
file; the monitor reads the whole directory. Writes are atomic renames so
concurrent writers never leave a torn file behind and the last writer
wins.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from pathlib import Path

from vibebar.engine.errors import SessionDecodeError
from vibebar.engine.models import (
    ActivityState,
    SessionSnapshot,
    decode_envelope,
    encode_envelope,
)
from vibebar.shared.services.durable_write import discard_state_file, publish_state_file

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Sessions in these states are never expired by the idle TTL.
_TRANSIENT_STATES = frozenset({ActivityState.RUNNING, ActivityState.AWAITING_INPUT})


class SessionStore:
    """Atomic file-per-session persistence with TTL cleanup."""

    def __init__(self, sessions_dir: Path) -> None:
        self._dir = Path(sessions_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def ensure_directory(self) -> None:
        """Create the sessions directory. Raises OSError on failure."""
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        """File for ``session_id``. Rewritten ids get a digest suffix so they stay distinct."""
        safe = _UNSAFE_CHARS.sub("_", session_id)
        if safe != session_id:
            digest = hashlib.sha1(session_id.encode("utf-8")).hexdigest()[:12]
            safe = f"{safe}-{digest}"
        return self._dir / f"{safe}.json"

    def write(self, snapshot: SessionSnapshot) -> Path:
        """Persist ``snapshot``. Raises OSError on failure."""
        path = self.path_for(snapshot.id)
        return publish_state_file(path, encode_envelope(snapshot))

    def delete(self, session_id: str) -> None:
        """Remove a session file. Missing files and I/O errors are logged only."""
        path = self.path_for(session_id)
        try:
            if discard_state_file(path):
                logger.debug("Deleted session %s", session_id)
        except OSError as exc:
            logger.warning("Failed to delete session %s: %s", session_id, exc)

    def load(self, session_id: str) -> SessionSnapshot | None:
        path = self.path_for(session_id)
        if not path.is_file():
            return None
        try:
            return self._read(path)
        except (OSError, SessionDecodeError) as exc:
            logger.warning("Cannot load session %s: %s", session_id, exc)
            return None

    def load_all(self) -> list[SessionSnapshot]:
        """Load every decodable session; corrupt files are skipped."""
        if not self._dir.is_dir():
            return []
        sessions: list[SessionSnapshot] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                sessions.append(self._read(path))
            except (OSError, SessionDecodeError) as exc:
                logger.debug("Skipping unreadable session file %s: %s", path, exc)
        return sessions

    def delete_other_sessions(self, pid: int, keeping: str) -> int:
        """Delete sessions owned by ``pid`` except the one with id ``keeping``.

        Returns the number of deleted sessions. No-op for ``pid <= 0``.
        """
        if pid <= 0:
            return 0
        removed = 0
        for session in self.load_all():
            if session.pid == pid and session.id != keeping:
                self.delete(session.id)
                removed += 1
        if removed:
            logger.debug(
                "Removed %d superseded session(s) for pid %d", removed, pid,
            )
        return removed

    def cleanup_stale_sessions(self, now: datetime, idle_ttl: float) -> int:
        """Delete idle/unknown sessions not updated within ``idle_ttl`` seconds."""
        removed = 0
        for session in self.load_all():
            if session.status in _TRANSIENT_STATES:
                continue
            age = (now - session.updated_at).total_seconds()
            if age > idle_ttl:
                self.delete(session.id)
                removed += 1
        if removed:
            logger.info("Cleaned up %d stale session(s)", removed)
        return removed

    @staticmethod
    def _read(path: Path) -> SessionSnapshot:
        try:
            return decode_envelope(path.read_text(encoding="utf-8"))
        except SessionDecodeError as exc:
            raise SessionDecodeError(exc.reason, path=str(path)) from exc
