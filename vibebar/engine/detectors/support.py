"""Process-table, port and working-directory helpers shared by detectors.

Everything here shells out to ``ps``/``lsof`` (or reads ``/proc`` where
available) with bounded timeouts. Failures return empty results.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_SUBPROCESS_TIMEOUT = 3.0

_LISTEN_PATTERNS = (
    re.compile(r"\*:(\d+)"),
    re.compile(r"\[::\]:(\d+)"),
    re.compile(r"127\.0\.0\.1:(\d+)"),
    re.compile(r"localhost:(\d+)"),
)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    cpu: float
    comm: str
    args: str

    @property
    def basename(self) -> str:
        return os.path.basename(self.comm)

    @property
    def argv(self) -> list[str]:
        return self.args.split()


async def run_command(*args: str, timeout: float = _SUBPROCESS_TIMEOUT) -> tuple[int, str]:
    """Run a command asynchronously with a timeout.

    Returns ``(returncode, stdout)``. On timeout or failure the return
    code is ``-1`` and stdout is empty.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError) as exc:
        logger.debug("Command not runnable %s: %s", args[0], exc)
        return -1, ""
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        logger.debug("Command timed out after %.1fs: %s", timeout, args)
        return -1, ""
    return proc.returncode or 0, stdout.decode("utf-8", errors="replace")


def parse_ps_output(text: str) -> list[ProcessInfo]:
    """Parse ``ps -eo pid=,ppid=,pcpu=,comm=,args=`` output."""
    processes: list[ProcessInfo] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(maxsplit=4)
        if len(parts) < 4:
            continue
        try:
            pid = int(parts[0])
            ppid = int(parts[1])
            cpu = float(parts[2].replace(",", "."))
        except ValueError:
            continue
        comm = parts[3]
        args = parts[4] if len(parts) > 4 else comm
        processes.append(ProcessInfo(pid=pid, ppid=ppid, cpu=cpu, comm=comm, args=args))
    return processes


async def list_processes() -> list[ProcessInfo]:
    rc, out = await run_command("ps", "-eo", "pid=,ppid=,pcpu=,comm=,args=")
    if rc != 0:
        return []
    return parse_ps_output(out)


def parse_listen_port(text: str) -> int | None:
    """First TCP listen port found in ``lsof -iTCP -sTCP:LISTEN`` output."""
    for line in text.splitlines():
        if "LISTEN" not in line:
            continue
        for pattern in _LISTEN_PATTERNS:
            match = pattern.search(line)
            if match:
                return int(match.group(1))
    return None


async def find_listening_port(pid: int) -> int | None:
    rc, out = await run_command(
        "lsof", "-a", "-p", str(pid), "-Pn", "-iTCP", "-sTCP:LISTEN",
    )
    if rc != 0:
        return None
    return parse_listen_port(out)


def parse_lsof_cwds(text: str) -> dict[int, str]:
    """Parse ``lsof -Fp -Fn`` field output into ``{pid: cwd}``."""
    cwds: dict[int, str] = {}
    current: int | None = None
    for line in text.splitlines():
        if line.startswith("p"):
            try:
                current = int(line[1:])
            except ValueError:
                current = None
        elif line.startswith("n") and current is not None:
            cwds[current] = line[1:]
    return cwds


async def bulk_get_cwds(pids: list[int]) -> dict[int, str]:
    """Resolve working directories for many processes in one lookup."""
    if not pids:
        return {}
    if sys.platform.startswith("linux") and Path("/proc").is_dir():
        cwds: dict[int, str] = {}
        for pid in pids:
            try:
                cwds[pid] = os.readlink(f"/proc/{pid}/cwd")
            except OSError:
                continue
        return cwds
    rc, out = await run_command(
        "lsof", "-a", "-p", ",".join(str(p) for p in pids),
        "-d", "cwd", "-Fp", "-Fn",
    )
    if rc != 0 and not out:
        return {}
    return parse_lsof_cwds(out)


def is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
