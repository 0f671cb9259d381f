"""Transparent PTY proxy around an interactive CLI tool.

The tool runs on a pseudo-terminal; every byte is forwarded unchanged in
both directions while a copy of the output feeds the prompt detector.
The session snapshot is written on start, refreshed at most every
``persist_interval_seconds`` and removed when the tool exits.
"""
from __future__ import annotations

import codecs
import errno
import logging
import os
import pty
import select
import signal
import sys
import time
import uuid

from vibebar.engine.config import MonitorConfig
from vibebar.engine.errors import PtySpawnError
from vibebar.engine.models import (
    ActivityState,
    SessionSnapshot,
    SessionSource,
    ToolKind,
    utcnow,
)
from vibebar.shared.services.session_store import SessionStore

from .prompt_detector import PromptStateMachine, RegexPromptClassifier
from .terminal import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    decode_exit_code,
    get_window_size,
    raw_mode,
    sanitize_output,
    set_window_size,
    write_all,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.2
READ_SIZE = 4096
EXEC_FAILURE_EXIT = 127


def _has_output_format_flag(args: list[str]) -> bool:
    for arg in args:
        if arg in ("--output-format", "-o"):
            return True
        if arg.startswith("--output-format=") or arg.startswith("-o="):
            return True
    return False


def _is_non_interactive_gemini(args: list[str], stdin_is_tty: bool) -> bool:
    if not stdin_is_tty:
        return True
    for arg in args:
        if arg in ("--stdin", "-p", "--prompt"):
            return True
        if arg.startswith("--prompt=") or arg.startswith("-p="):
            return True
    return False


def build_wrapped_args(tool: ToolKind, args: list[str], stdin_is_tty: bool) -> list[str]:
    """Arguments passed to the tool; Gemini gets streaming JSON when scripted."""
    wrapped = list(args)
    if tool is not ToolKind.GEMINI or _has_output_format_flag(wrapped):
        return wrapped
    if _is_non_interactive_gemini(wrapped, stdin_is_tty):
        wrapped.extend(["--output-format", "stream-json"])
    return wrapped


class WrapperRunner:
    """Runs one tool under a PTY and mirrors its state into the store."""

    def __init__(
        self,
        tool: ToolKind,
        passthrough: list[str],
        config: MonitorConfig,
        store: SessionStore | None = None,
    ) -> None:
        self._tool = tool
        self._config = config
        self._store = store or SessionStore(config.sessions_dir)
        self._stdin_fd = sys.stdin.fileno()
        self._stdout_fd = sys.stdout.fileno()
        self._stdin_is_tty = os.isatty(self._stdin_fd)
        self._args = build_wrapped_args(tool, passthrough, self._stdin_is_tty)
        self._detector = PromptStateMachine(
            RegexPromptClassifier.for_tool(tool), config.prompt,
        )
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._child_pid = 0
        self._master_fd = -1
        self._window: tuple[int, int] | None = None
        self._last_persist = float("-inf")

        now = utcnow()
        self.snapshot = SessionSnapshot(
            id=f"wrapper-{uuid.uuid4()}",
            tool=tool,
            pid=0,
            parent_pid=os.getpid(),
            status=ActivityState.RUNNING,
            source=SessionSource.WRAPPER,
            started_at=now,
            updated_at=now,
            last_output_at=now,
            cwd=os.getcwd(),
            command=[tool.executable, *self._args],
            notes="pty-wrapper",
        )

    def run(self) -> int:
        """Proxy the tool until it exits. Returns its shell-style exit code."""
        signal.signal(signal.SIGPIPE, signal.SIG_IGN)
        self._store.ensure_directory()
        self._spawn()
        try:
            with raw_mode(self._stdin_fd):
                self._persist(force=True)
                return self._loop()
        finally:
            if self._master_fd >= 0:
                os.close(self._master_fd)
                self._master_fd = -1
            self._store.delete(self.snapshot.id)

    def _spawn(self) -> None:
        executable = self._tool.executable
        size = get_window_size(self._stdin_fd) or (DEFAULT_ROWS, DEFAULT_COLS)
        try:
            pid, master_fd = pty.fork()
        except OSError as exc:
            raise PtySpawnError(executable, str(exc)) from exc

        if pid == 0:
            try:
                os.execvp(executable, [executable, *self._args])
            except OSError as exc:
                os.write(2, f"vibebar: cannot start {executable}: {exc.strerror}\r\n".encode())
            os._exit(EXEC_FAILURE_EXIT)

        self._child_pid = pid
        self._master_fd = master_fd
        try:
            set_window_size(master_fd, *size)
        except OSError as exc:
            logger.debug("Cannot set initial window size: %s", exc)
        self._window = size
        self.snapshot.pid = pid
        logger.info(
            "Wrapped %s as pid %d (session %s)", executable, pid, self.snapshot.id,
        )

    def _loop(self) -> int:
        stdin_open = self._stdin_is_tty
        while True:
            self._forward_window_size()
            watched = [self._master_fd] + ([self._stdin_fd] if stdin_open else [])
            try:
                readable, _, _ = select.select(watched, [], [], POLL_INTERVAL_SECONDS)
            except InterruptedError:
                readable = []

            if self._stdin_fd in readable and stdin_open:
                stdin_open = self._consume_stdin()
            if self._master_fd in readable and not self._consume_master():
                return self._reap(blocking=True)

            self.snapshot.status = self._detector.state()
            self._persist(force=False)

            code = self._reap(blocking=False)
            if code is not None:
                self._drain_master()
                return code

    def _consume_stdin(self) -> bool:
        try:
            data = os.read(self._stdin_fd, READ_SIZE)
        except OSError as exc:
            logger.debug("stdin read failed: %s", exc)
            return False
        if not data:
            return False
        if write_all(self._master_fd, data):
            self._detector.on_input()
            self.snapshot.last_input_at = utcnow()
        return True

    def _consume_master(self) -> bool:
        """Forward one chunk of tool output. False once the PTY is closed."""
        try:
            data = os.read(self._master_fd, READ_SIZE)
        except OSError as exc:
            # Linux reports EIO on the master once the child side is closed.
            if exc.errno in (errno.EAGAIN, errno.EINTR):
                return True
            return False
        if not data:
            return False
        write_all(self._stdout_fd, data)
        self.snapshot.last_output_at = utcnow()
        self._detector.on_output(sanitize_output(self._decoder.decode(data)))
        return True

    def _drain_master(self) -> None:
        while True:
            try:
                readable, _, _ = select.select([self._master_fd], [], [], 0)
            except (InterruptedError, ValueError):
                return
            if not readable or not self._consume_master():
                return

    def _reap(self, blocking: bool) -> int | None:
        flags = 0 if blocking else os.WNOHANG
        try:
            pid, status = os.waitpid(self._child_pid, flags)
        except ChildProcessError:
            return 0
        if pid == 0:
            return None
        code = decode_exit_code(status)
        logger.info("Wrapped pid %d exited with %d", self._child_pid, code)
        return code

    def _forward_window_size(self) -> None:
        if not self._stdin_is_tty:
            return
        size = get_window_size(self._stdin_fd)
        if size is None or size == self._window:
            return
        self._window = size
        try:
            set_window_size(self._master_fd, *size)
            os.kill(self._child_pid, signal.SIGWINCH)
        except OSError as exc:
            logger.debug("Window size forwarding failed: %s", exc)

    def _persist(self, force: bool) -> None:
        now = time.monotonic()
        if not force and now - self._last_persist < self._config.persist_interval_seconds:
            return
        self.snapshot.updated_at = max(utcnow(), self.snapshot.updated_at)
        try:
            self._store.write(self.snapshot)
        except OSError as exc:
            logger.warning("Failed to write session %s: %s", self.snapshot.id, exc)
            return
        self._last_persist = now
