"""Root logger setup shared by the command-line entry points."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(
    log_file: Path | None,
    level: str = "INFO",
    *,
    stderr_level: str | None = None,
) -> None:
    """Send logs to a rotating file and to stderr.

    ``stderr_level`` raises the threshold for the console handler only;
    ``"OFF"`` drops it entirely. File logging is skipped when the log
    directory cannot be created.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
            )
        except OSError as exc:
            print(f"vibebar: file logging disabled: {exc}", file=sys.stderr)
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    if stderr_level is None or stderr_level.upper() != "OFF":
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        if stderr_level is not None:
            stream_handler.setLevel(
                getattr(logging, stderr_level.upper(), logging.WARNING)
            )
        root.addHandler(stream_handler)
