"""Crash-safe replacement of VibeBar's small JSON state files.

Session envelopes and Copilot hook records are rewritten whole on every
update and read concurrently by the monitor. Each update is staged in a
hidden sibling named after the writing process and renamed into place,
so a reader sees the old document or the new one.
"""
from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

STAGING_PREFIX = "."
STAGING_SUFFIX = ".staging"


def staging_path(target: Path) -> Path:
    """Hidden sibling of ``target`` unique to this process and call."""
    token = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
    return target.with_name(f"{STAGING_PREFIX}{target.name}.{token}{STAGING_SUFFIX}")


def _sync_directory(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    except OSError as exc:
        logger.debug("Cannot open %s for sync: %s", directory, exc)
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        logger.debug("Directory sync unsupported on %s: %s", directory, exc)
    finally:
        os.close(fd)


def publish_state_file(target: Path, document: str) -> Path:
    """Replace ``target`` with ``document`` as one newline-terminated line.

    Creates the parent directory. Raises OSError when the document cannot
    be staged or renamed; the staging file never outlives the call.
    """
    if not document.endswith("\n"):
        document += "\n"
    target.parent.mkdir(parents=True, exist_ok=True)
    staged = staging_path(target)
    fd = os.open(staged, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(document.encode("utf-8"))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staged, target)
    except OSError:
        staged.unlink(missing_ok=True)
        raise
    _sync_directory(target.parent)
    return target


def discard_state_file(target: Path) -> bool:
    """Remove ``target``. Returns False when it was already gone."""
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    _sync_directory(target.parent)
    return True
