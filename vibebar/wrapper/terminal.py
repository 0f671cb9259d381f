"""Low-level terminal helpers for the PTY wrapper."""
from __future__ import annotations

import contextlib
import errno
import fcntl
import os
import re
import struct
import termios
import tty
from collections.abc import Iterator

DEFAULT_ROWS = 24
DEFAULT_COLS = 80

_ESCAPE_RE = re.compile(
    r"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)?|[ -/]*[0-~])"
)
_WHITESPACE_RE = re.compile(r"[\n\r\t]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_output(text: str) -> str:
    """Strip escape sequences and control characters from terminal output.

    CSI and OSC sequences are removed whole, as are two-byte and
    charset-selection escapes. Newline, carriage return and tab become
    spaces; other control characters are dropped.
    """
    text = _ESCAPE_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return _CONTROL_RE.sub("", text)


def decode_exit_code(status: int) -> int:
    """Shell-style exit code from a raw ``waitpid`` status."""
    signal_number = status & 0x7F
    if signal_number == 0:
        return (status >> 8) & 0xFF
    if signal_number == 0x7F:
        return 128
    return 128 + signal_number


def get_window_size(fd: int) -> tuple[int, int] | None:
    """``(rows, cols)`` of the terminal on ``fd``, or None when not a tty."""
    try:
        packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * 8)
    except OSError:
        return None
    rows, cols, _, _ = struct.unpack("HHHH", packed)
    if rows == 0 or cols == 0:
        return None
    return rows, cols


def set_window_size(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


@contextlib.contextmanager
def raw_mode(fd: int) -> Iterator[bool]:
    """Put ``fd`` in raw mode for the duration of the block.

    Yields whether raw mode was enabled. The original attributes are
    restored on every exit path.
    """
    if not os.isatty(fd):
        yield False
        return
    try:
        original = termios.tcgetattr(fd)
    except termios.error:
        yield False
        return
    try:
        tty.setraw(fd, termios.TCSANOW)
    except termios.error:
        yield False
        return
    try:
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSANOW, original)


def write_all(fd: int, data: bytes) -> bool:
    """Write every byte, retrying on EINTR. False when the fd is gone."""
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except InterruptedError:
            continue
        except OSError as exc:
            if exc.errno == errno.EAGAIN:
                continue
            return False
        view = view[written:]
    return True
