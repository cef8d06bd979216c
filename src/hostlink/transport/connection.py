"""Connection descriptors: how to reach a peer host and who owns it."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal, TypeAlias

from hostlink.config import Settings
from hostlink.constants import INFINITE_TIMEOUT_MS, MAX_TIMEOUT_MS
from hostlink.errors import AlreadyDisposedError, ConnectAbortedError, SpawnError
from hostlink.transport.naming import create_process_pipe_name
from hostlink.transport.pipe import PipeEndpoint, default_opener, wait_for_endpoint
from hostlink.transport.process import (
    ProcessHandle,
    ProcessHost,
    StderrMonitor,
    resolve_pwsh_path,
)
from hostlink.transport.session import TransportSession
from hostlink.transport.streams import LineReader, LineWriter
from hostlink.utils.command_lex import split_arguments

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hostlink.transport.engine import RemotingEngine
    from hostlink.transport.pipe import PipeOpener

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ByProcessId:
    """Attach to the named pipe served by an existing process."""

    pid: int


@dataclass(frozen=True)
class ByExplicitName:
    """Attach to a named pipe by its name."""

    name: str


@dataclass(frozen=True)
class BySpawnedProcess:
    """Start a peer process and talk to it.

    Attributes:
        executable: Path of the program to start.
        arguments: Command-line arguments, already split.
        channel: ``stdio`` to use the child's standard streams, ``pipe`` to
            connect to the named pipe the child serves.
    """

    executable: str
    arguments: tuple[str, ...] = ()
    channel: Literal["stdio", "pipe"] = "stdio"


ConnectionTarget: TypeAlias = ByProcessId | ByExplicitName | BySpawnedProcess


class ConnectionState(StrEnum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionInfo:
    """Describes a peer and produces the duplex line stream to it.

    A spawned target makes this instance the owner of the child process:
    ``dispose`` kills it. Attached targets are never signalled.
    ``connect`` must not run concurrently on the same instance.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        *,
        timeout_ms: int = INFINITE_TIMEOUT_MS,
        settings: Settings | None = None,
        process_host: ProcessHost | None = None,
        pipe_opener: PipeOpener | None = None,
    ) -> None:
        if timeout_ms < INFINITE_TIMEOUT_MS:
            msg = f"timeout_ms must be >= {INFINITE_TIMEOUT_MS} (got {timeout_ms})"
            raise ValueError(msg)
        self._target = target
        self._timeout_ms = timeout_ms
        self._settings = settings or Settings()
        self._process_host = process_host or ProcessHost(limit=self._settings.stream_limit_bytes)
        self._pipe_opener = pipe_opener
        self._state = ConnectionState.UNCONNECTED
        self._abort_requested = threading.Event()
        self._endpoint: PipeEndpoint | None = None
        self._process: ProcessHandle | None = None
        self._stderr_monitor: StderrMonitor | None = None
        self._reader: LineReader | None = None
        self._writer: LineWriter | None = None

    @classmethod
    def for_process_id(
        cls,
        pid: int,
        *,
        timeout_ms: int | None = None,
        settings: Settings | None = None,
    ) -> ConnectionInfo:
        settings = settings or Settings()
        timeout = settings.connect_timeout_ms if timeout_ms is None else timeout_ms
        return cls(ByProcessId(pid), timeout_ms=timeout, settings=settings)

    @classmethod
    def for_pipe_name(
        cls,
        name: str,
        *,
        timeout_ms: int | None = None,
        settings: Settings | None = None,
    ) -> ConnectionInfo:
        settings = settings or Settings()
        timeout = settings.connect_timeout_ms if timeout_ms is None else timeout_ms
        return cls(ByExplicitName(name), timeout_ms=timeout, settings=settings)

    @classmethod
    def for_subprocess(
        cls,
        executable: str | None = None,
        arguments: Sequence[str] | None = None,
        *,
        channel: Literal["stdio", "pipe"] = "stdio",
        current_executable: str | None = None,
        search_path: str | None = None,
        timeout_ms: int | None = None,
        settings: Settings | None = None,
    ) -> ConnectionInfo:
        """Describe a peer host that this connection will start.

        When *executable* is omitted it comes from ``settings.executable_path``
        or is located with :func:`resolve_pwsh_path` using the injected
        *current_executable* and *search_path*.

        Raises:
            SpawnError: No executable could be located.
        """
        settings = settings or Settings()
        resolved = executable or settings.executable_path
        if resolved is None:
            resolved = resolve_pwsh_path(
                current_executable,
                search_path,
                executable_name=settings.executable_name,
            )
        if resolved is None:
            raise SpawnError(
                settings.executable_name,
                FileNotFoundError(f"{settings.executable_name} was not found on the search path"),
            )
        if arguments is None:
            if channel == "stdio":
                arguments = split_arguments(settings.server_arguments)
            else:
                arguments = split_arguments(settings.pipe_arguments)
        timeout = settings.subprocess_connect_timeout_ms if timeout_ms is None else timeout_ms
        target = BySpawnedProcess(executable=resolved, arguments=tuple(arguments), channel=channel)
        return cls(target, timeout_ms=timeout, settings=settings)

    @property
    def target(self) -> ConnectionTarget:
        return self._target

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def owns_process(self) -> bool:
        return isinstance(self._target, BySpawnedProcess)

    @property
    def process(self) -> ProcessHandle | None:
        return self._process

    @property
    def endpoint(self) -> PipeEndpoint | None:
        return self._endpoint

    @property
    def stderr_tail(self) -> list[str]:
        """Most recent stderr lines of a stdio child; empty otherwise."""
        return self._stderr_monitor.tail if self._stderr_monitor is not None else []

    @property
    def computer_name(self) -> str:
        """Display name of the peer."""
        match self._target:
            case ByProcessId(pid=pid):
                return f"LocalMachine:{pid}"
            case ByExplicitName(name=name):
                return f"Pipe:{name}"
            case BySpawnedProcess():
                if self._process is not None:
                    return f"Subprocess:{self._process.pid}"
                return "localhost"

    def _pipe_timeout(self) -> int:
        return self._timeout_ms if self._timeout_ms > INFINITE_TIMEOUT_MS else MAX_TIMEOUT_MS

    async def connect(self) -> tuple[LineReader, LineWriter]:
        """Establish the duplex line stream to the peer.

        Returns:
            ``(reader, writer)``; the writer sends each line immediately.

        Raises:
            ProcessNotFoundError: The target pid is not running.
            ConnectionTimeoutError: The pipe did not accept within the timeout.
            ConnectAbortedError: ``abort`` or ``stop_connect`` interrupted the attempt.
            ConnectionFailedError: The pipe is unreachable.
            SpawnError: The peer process could not be started.
            AlreadyDisposedError: ``stop_connect`` was already called.
        """
        if self._state is ConnectionState.CLOSED:
            raise AlreadyDisposedError("Connection")
        if self._state is not ConnectionState.UNCONNECTED:
            msg = f"Connection is already {self._state.value}"
            raise RuntimeError(msg)

        self._abort_requested.clear()
        self._state = ConnectionState.CONNECTING
        try:
            match self._target:
                case ByProcessId(pid=pid):
                    reader, writer = await self._connect_pipe(create_process_pipe_name(pid))
                case ByExplicitName(name=name):
                    reader, writer = await self._connect_pipe(name)
                case BySpawnedProcess(channel="pipe"):
                    handle = await self._spawn()
                    name = create_process_pipe_name(handle.pid)
                    reader, writer = await self._connect_pipe(name, wait_for_server=True)
                case BySpawnedProcess():
                    reader, writer = self._connect_stdio(await self._spawn())
        except BaseException:
            self._abort_requested.clear()
            await self._release_failed_connect()
            raise
        self._abort_requested.clear()

        if self._state is ConnectionState.CLOSED:
            await self._release_failed_connect()
            raise ConnectAbortedError(self.computer_name)

        self._reader, self._writer = reader, writer
        self._state = ConnectionState.CONNECTED
        logger.info("Connected to %s", self.computer_name)
        return reader, writer

    async def _spawn(self) -> ProcessHandle:
        target = self._target
        assert isinstance(target, BySpawnedProcess)
        self._process = await self._process_host.spawn(target.executable, target.arguments)
        return self._process

    async def _connect_pipe(
        self,
        name: str,
        *,
        wait_for_server: bool = False,
    ) -> tuple[LineReader, LineWriter]:
        opener = self._pipe_opener or default_opener()
        if wait_for_server:
            opener = wait_for_endpoint(opener)
        self._endpoint = PipeEndpoint(
            name,
            opener=opener,
            encoding=self._settings.encoding,
            limit=self._settings.stream_limit_bytes,
        )
        if self._abort_requested.is_set():
            raise ConnectAbortedError(name)
        attempt = asyncio.ensure_future(self._endpoint.connect(self._pipe_timeout()))
        try:
            # One step puts the endpoint in CONNECTING; forward an abort that
            # arrived while it was still idle.
            await asyncio.sleep(0)
            if self._abort_requested.is_set():
                self._endpoint.abort_connect()
            return await attempt
        except AlreadyDisposedError:
            if self._state is ConnectionState.CLOSED:
                # stop_connect retired the endpoint before it started connecting.
                raise ConnectAbortedError(name) from None
            raise
        except BaseException:
            if not attempt.done():
                attempt.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await attempt
            raise

    def _connect_stdio(self, handle: ProcessHandle) -> tuple[LineReader, LineWriter]:
        assert handle.stdin is not None
        assert handle.stdout is not None
        assert handle.stderr is not None
        self._stderr_monitor = StderrMonitor(
            handle.stderr,
            pid=handle.pid,
            max_lines=self._settings.stderr_tail_lines,
            encoding=self._settings.encoding,
        )
        self._stderr_monitor.start()
        encoding = self._settings.encoding
        reader = LineReader(handle.stdout, encoding=encoding)
        writer = LineWriter(handle.stdin, encoding=encoding)
        return reader, writer

    async def _release_failed_connect(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.UNCONNECTED
        if self._endpoint is not None:
            await self._endpoint.aclose()
            self._endpoint = None
        if self._stderr_monitor is not None:
            await self._stderr_monitor.stop()
            self._stderr_monitor = None
        if self._process is not None:
            # Nobody else can reach a child we started but failed to connect to.
            await self._process_host.terminate(self._process)
            self._process = None

    def abort(self) -> None:
        """Abort an in-flight pipe connect. Safe to call from any thread.

        Ignored when no connect is in flight.
        """
        if self._state is not ConnectionState.CONNECTING:
            return
        self._abort_requested.set()
        endpoint = self._endpoint
        if endpoint is not None:
            endpoint.abort_connect()

    async def stop_connect(self) -> None:
        """Abort any connect attempt and close the streams; idempotent."""
        self.abort()
        if self._state is ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        if self._endpoint is not None:
            await self._endpoint.aclose()
        if self._writer is not None:
            await self._writer.aclose()
        logger.debug("Stopped connection to %s", self.computer_name)

    async def dispose(self) -> None:
        """Stop the connection and kill the child process this instance started."""
        await self.stop_connect()
        if self._process is not None and self.owns_process:
            await self._process_host.terminate(self._process)
        if self._stderr_monitor is not None:
            await self._stderr_monitor.stop()

    def clone(self) -> ConnectionInfo:
        """Return an unconnected copy with the same target and timeout."""
        return ConnectionInfo(
            self._target,
            timeout_ms=self._timeout_ms,
            settings=self._settings,
            process_host=self._process_host,
            pipe_opener=self._pipe_opener,
        )

    def create_session(self, engine: RemotingEngine) -> TransportSession:
        """Create a transport session bound to *engine* over this connection."""
        return TransportSession(self, engine)

    def __repr__(self) -> str:
        return (
            f"ConnectionInfo(target={self._target!r}, timeout_ms={self._timeout_ms}, "
            f"state={self._state.value})"
        )


__all__ = [
    "ByExplicitName",
    "ByProcessId",
    "BySpawnedProcess",
    "ConnectionInfo",
    "ConnectionState",
    "ConnectionTarget",
]
