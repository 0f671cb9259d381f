"""Base interface for session detectors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..models import SessionSnapshot

logger = logging.getLogger(__name__)


class SessionDetector(ABC):
    """Produces snapshots for tools it can observe.

    Subclasses implement ``_detect``. Any failure inside it is logged and
    degrades to an empty result so one broken channel never hides the
    others.
    """

    detector_name: str

    async def detect_sessions(self) -> list[SessionSnapshot]:
        try:
            return await self._detect()
        except Exception as exc:
            logger.warning(
                "%s detector failed: %s", self.detector_name, exc, exc_info=True,
            )
            return []

    @abstractmethod
    async def _detect(self) -> list[SessionSnapshot]:
        """Return the sessions currently visible to this detector."""
