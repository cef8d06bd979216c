"""Child process lifecycle for stdio transports and pipe attach targets."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import subprocess
import sys
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hostlink.constants import (
    PWSH_EXECUTABLE,
    STDERR_TAIL_LINES,
    STDERR_TASK_NAME,
    STREAM_LIMIT_BYTES,
)
from hostlink.errors import ProcessNotFoundError, SpawnError, TransportError
from hostlink.instrumentation import record_kill, track_spawn
from hostlink.process_liveness import pid_exists
from hostlink.utils.command_lex import format_command

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_KILL_WAIT_SECONDS = 10.0


def resolve_pwsh_path(
    current_executable: str | None = None,
    search_path: str | None = None,
    *,
    executable_name: str = PWSH_EXECUTABLE,
) -> str | None:
    """Locate a peer host executable.

    Args:
        current_executable: Path of the running host, if known. It wins when its
            file name contains *executable_name*.
        search_path: ``PATH``-style directory list; defaults to the environment.
        executable_name: Base name to look for (``.exe`` is implied on Windows).

    Returns:
        The executable path, or ``None`` when nothing suitable was found.
    """
    if current_executable:
        current_name = os.path.basename(current_executable).lower()
        if executable_name.lower() in current_name:
            return current_executable
    return shutil.which(executable_name, path=search_path)


@dataclass(eq=False)
class ProcessHandle:
    """A spawned or attached process.

    Attributes:
        pid: OS process id.
        owned: Whether this transport started the process and must kill it.
        executable: Executable path for spawned processes.
        process: The asyncio subprocess for spawned processes; ``None`` when attached.
        released: Set once ``ProcessHost.terminate`` has handled the process.
    """

    pid: int
    owned: bool
    executable: str | None = None
    process: asyncio.subprocess.Process | None = None
    released: bool = False

    @property
    def stdin(self) -> asyncio.StreamWriter | None:
        return self.process.stdin if self.process is not None else None

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout if self.process is not None else None

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr if self.process is not None else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process is not None else None

    @property
    def exited(self) -> bool:
        if self.process is not None:
            return self.process.returncode is not None
        return not pid_exists(self.pid)


def _spawn_flags() -> dict[str, int]:
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


class ProcessHost:
    """Starts, attaches to, and terminates peer processes."""

    def __init__(self, *, limit: int = STREAM_LIMIT_BYTES) -> None:
        self._limit = limit

    async def spawn(
        self,
        executable: str,
        arguments: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        """Start *executable* with all standard streams piped.

        No shell is involved and no console window is created.

        Raises:
            SpawnError: The executable could not be found or started.
        """
        with track_spawn(executable):
            try:
                process = await asyncio.create_subprocess_exec(
                    executable,
                    *arguments,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd is not None else None,
                    env=dict(env) if env is not None else None,
                    limit=self._limit,
                    **_spawn_flags(),
                )
            except (OSError, ValueError) as exc:
                raise SpawnError(executable, exc) from exc

        logger.info("Spawned %s (pid=%d)", format_command(executable, arguments), process.pid)
        return ProcessHandle(pid=process.pid, owned=True, executable=executable, process=process)

    def attach(self, pid: int) -> ProcessHandle:
        """Identify an existing process without taking ownership of it.

        Raises:
            ProcessNotFoundError: No process with *pid* is running.
        """
        if not pid_exists(pid):
            raise ProcessNotFoundError(pid)
        logger.debug("Attached to pid %d", pid)
        return ProcessHandle(pid=pid, owned=False)

    async def terminate(
        self,
        handle: ProcessHandle,
        *,
        timeout: float = _KILL_WAIT_SECONDS,
    ) -> None:
        """Kill an owned process and release it.

        Attached processes are never signalled. Processes that already exited
        are released without a kill. Calling this again is a no-op.

        Raises:
            TransportError: An owned process survived the kill.
        """
        if not handle.owned:
            logger.debug("Not terminating pid %d: process is not owned", handle.pid)
            return
        if handle.released:
            return
        handle.released = True

        process = handle.process
        if process is None:
            return

        if process.returncode is None:
            logger.info("Killing owned process pid=%d", handle.pid)
            record_kill(handle.executable or str(handle.pid), handle.pid)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except TimeoutError as exc:
                msg = f"Owned process pid={handle.pid} did not exit after kill"
                raise TransportError(msg, code="PROCESS_KILL_TIMEOUT") from exc
        else:
            logger.debug(
                "Owned process pid=%d already exited (rc=%s)", handle.pid, process.returncode
            )

        if process.stdin is not None:
            with contextlib.suppress(ConnectionError, OSError, RuntimeError):
                process.stdin.close()


class StderrMonitor:
    """Drains a child's stderr and keeps its most recent lines.

    The tail is a diagnostic side channel for a peer that closed its output
    stream; reading it never turns into a transport error by itself.
    """

    def __init__(
        self,
        stream: asyncio.StreamReader,
        *,
        pid: int,
        max_lines: int = STDERR_TAIL_LINES,
        encoding: str = "utf-8",
    ) -> None:
        self._stream = stream
        self._pid = pid
        self._encoding = encoding
        self._tail: deque[str] = deque(maxlen=max_lines)
        self._task: asyncio.Task[None] | None = None

    @property
    def tail(self) -> list[str]:
        return list(self._tail)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=STDERR_TASK_NAME)

    async def _run(self) -> None:
        while True:
            try:
                raw = await self._stream.readline()
            except ValueError:
                # Oversized line; readline already discarded it.
                self._tail.append("<stderr line exceeded buffer limit>")
                continue
            except (ConnectionError, OSError):
                return
            if not raw:
                return
            line = raw.decode(self._encoding, errors="replace").rstrip("\r\n")
            self._tail.append(line)
            logger.debug("[pid %d stderr] %s", self._pid, line)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


__all__ = [
    "ProcessHandle",
    "ProcessHost",
    "StderrMonitor",
    "resolve_pwsh_path",
]
