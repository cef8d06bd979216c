"""Client side of a named pipe endpoint with a bounded, abortable connect.

On POSIX the pipe is the Unix domain socket a .NET host creates for it; on
Windows it is a real named pipe opened through the proactor event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import threading
import time
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from hostlink.constants import (
    CONNECT_POLL_INTERVAL_SECONDS,
    MAX_TIMEOUT_MS,
    STREAM_LIMIT_BYTES,
)
from hostlink.errors import (
    AlreadyDisposedError,
    ConnectAbortedError,
    ConnectionFailedError,
    ConnectionTimeoutError,
)
from hostlink.instrumentation import track_connect
from hostlink.transport.naming import create_process_pipe_name, pipe_address
from hostlink.transport.streams import LineReader, LineWriter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    StreamPair: TypeAlias = tuple[asyncio.StreamReader, asyncio.StreamWriter]
    PipeOpener: TypeAlias = Callable[[str, int], Awaitable[StreamPair]]

logger = logging.getLogger(__name__)

_ERROR_PIPE_BUSY = 231


async def open_unix_pipe(address: str, limit: int) -> StreamPair:
    """Connect to the Unix domain socket backing a named pipe."""
    return await asyncio.open_unix_connection(address, limit=limit)


async def open_windows_pipe(address: str, limit: int) -> StreamPair:
    """Connect to a Windows named pipe.

    All server instances being busy is not a failure: the open is retried
    until the caller's deadline or abort cancels it.
    """
    loop = asyncio.get_running_loop()
    while True:
        reader = asyncio.StreamReader(limit=limit, loop=loop)
        protocol = asyncio.StreamReaderProtocol(reader, loop=loop)
        try:
            transport, _ = await loop.create_pipe_connection(  # type: ignore[attr-defined]
                lambda: protocol, address
            )
        except OSError as exc:
            if getattr(exc, "winerror", None) != _ERROR_PIPE_BUSY:
                raise
            await asyncio.sleep(CONNECT_POLL_INTERVAL_SECONDS)
            continue
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        return reader, writer


def default_opener() -> PipeOpener:
    """Return the pipe opener for the running platform."""
    if sys.platform == "win32":
        return open_windows_pipe
    return open_unix_pipe


def wait_for_endpoint(
    opener: PipeOpener,
    *,
    interval: float = CONNECT_POLL_INTERVAL_SECONDS,
) -> PipeOpener:
    """Wrap *opener* so a pipe that does not exist yet is retried.

    Used when the server process was just started and may not have created
    its pipe. Other errors still propagate.
    """

    async def _open(address: str, limit: int) -> StreamPair:
        while True:
            try:
                return await opener(address, limit)
            except (FileNotFoundError, ConnectionRefusedError):
                await asyncio.sleep(interval)

    return _open


class EndpointState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


def _deadline(timeout_ms: int) -> float | None:
    if timeout_ms < 0 or timeout_ms >= MAX_TIMEOUT_MS:
        return None
    return time.monotonic() + timeout_ms / 1000.0


class PipeEndpoint:
    """Owns the duplex stream to one named pipe.

    ``connect`` starts a single non-blocking open and polls it at a fixed
    interval, so ``abort_connect`` (callable from any thread) and the
    deadline both take effect within one poll period.

    Usage::

        endpoint = PipeEndpoint.for_process(pid)
        reader, writer = await endpoint.connect(timeout_ms=5000)
        writer.write_line("hello")
        line = await reader.read_line()
        endpoint.close()
    """

    def __init__(
        self,
        name: str,
        *,
        address: str | None = None,
        opener: PipeOpener | None = None,
        encoding: str = "utf-8",
        limit: int = STREAM_LIMIT_BYTES,
        poll_interval: float = CONNECT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._name = name
        self._address = address or pipe_address(name)
        self._opener = opener or default_opener()
        self._encoding = encoding
        self._limit = limit
        self._poll_interval = poll_interval
        self._abort = threading.Event()
        self._state = EndpointState.IDLE
        self._reader: LineReader | None = None
        self._writer: LineWriter | None = None

    @classmethod
    def for_process(cls, pid: int, **kwargs) -> PipeEndpoint:
        """Create an endpoint for the pipe served by process *pid*."""
        return cls(create_process_pipe_name(pid), **kwargs)

    @property
    def name(self) -> str:
        return self._name

    @property
    def address(self) -> str:
        return self._address

    @property
    def state(self) -> EndpointState:
        return self._state

    @property
    def reader(self) -> LineReader | None:
        return self._reader

    @property
    def writer(self) -> LineWriter | None:
        return self._writer

    async def connect(self, timeout_ms: int) -> tuple[LineReader, LineWriter]:
        """Connect to the pipe, waiting up to *timeout_ms* milliseconds.

        A negative timeout, or one of at least ``MAX_TIMEOUT_MS``, waits
        indefinitely.

        Raises:
            ConnectionTimeoutError: The deadline passed before the pipe accepted.
            ConnectAbortedError: ``abort_connect`` or ``close`` was called first.
            ConnectionFailedError: The OS rejected the connection outright.
            AlreadyDisposedError: The endpoint was closed.
            RuntimeError: A connect is already in flight or has completed.
        """
        if self._state is EndpointState.CLOSED:
            raise AlreadyDisposedError(f"Pipe endpoint {self._name}")
        if self._state is not EndpointState.IDLE:
            msg = f"Pipe endpoint {self._name} is already {self._state.value}"
            raise RuntimeError(msg)

        # Clear before publishing CONNECTING so an abort racing in is kept.
        self._abort.clear()
        self._state = EndpointState.CONNECTING
        logger.info("Connecting to named pipe %s (timeout=%d ms)", self._address, timeout_ms)
        with track_connect(self._name):
            stream_reader, stream_writer = await self._open(timeout_ms)

        self._reader = LineReader(stream_reader, encoding=self._encoding)
        self._writer = LineWriter(stream_writer, encoding=self._encoding)
        self._state = EndpointState.CONNECTED
        logger.info("Connected to named pipe %s", self._address)
        return self._reader, self._writer

    async def _open(self, timeout_ms: int) -> StreamPair:
        deadline = _deadline(timeout_ms)
        attempt = asyncio.ensure_future(self._opener(self._address, self._limit))
        try:
            await self._poll(attempt, deadline, timeout_ms)
        except BaseException:
            await self._discard(attempt)
            self._reset_after_failure()
            self._abort.clear()
            raise

        self._abort.clear()
        try:
            stream_reader, stream_writer = attempt.result()
        except OSError as exc:
            logger.info("Connect to named pipe %s failed: %s", self._address, exc)
            self._reset_after_failure()
            raise ConnectionFailedError(self._name, exc) from exc
        except BaseException:
            self._reset_after_failure()
            raise

        if self._state is EndpointState.CLOSED:
            # Closed while the open was completing; do not hand out the stream.
            with contextlib.suppress(OSError, RuntimeError):
                stream_writer.close()
            raise ConnectAbortedError(self._name)
        return stream_reader, stream_writer

    async def _poll(
        self,
        attempt: asyncio.Future[StreamPair],
        deadline: float | None,
        timeout_ms: int,
    ) -> None:
        while True:
            wait_for = self._poll_interval
            if deadline is not None:
                wait_for = max(0.0, min(wait_for, deadline - time.monotonic()))
            await asyncio.wait({attempt}, timeout=wait_for)
            if attempt.done():
                return
            if self._abort.is_set():
                logger.info("Connect to named pipe %s aborted", self._address)
                raise ConnectAbortedError(self._name)
            if deadline is not None and time.monotonic() >= deadline:
                logger.info("Connect to named pipe %s timed out", self._address)
                raise ConnectionTimeoutError(self._name, timeout_ms)

    async def _discard(self, attempt: asyncio.Future[StreamPair]) -> None:
        if not attempt.done():
            attempt.cancel()
        with contextlib.suppress(asyncio.CancelledError, OSError):
            _, stream_writer = await attempt
            stream_writer.close()

    def _reset_after_failure(self) -> None:
        if self._state is EndpointState.CONNECTING:
            self._state = EndpointState.IDLE

    def abort_connect(self) -> None:
        """Make an in-flight ``connect`` give up at its next poll.

        Safe to call from any thread. Has no effect unless a connect is in
        flight; a later ``connect`` is not affected.
        """
        if self._state is not EndpointState.CONNECTING:
            return
        self._abort.set()

    def close(self) -> None:
        """Close the stream if open and retire the endpoint; idempotent."""
        if self._state is EndpointState.CLOSED:
            return
        if self._state is EndpointState.CONNECTING:
            self._abort.set()
        self._state = EndpointState.CLOSED
        if self._writer is not None:
            self._writer.close()
            logger.info("Closed named pipe %s", self._address)

    async def aclose(self) -> None:
        """Close the endpoint and wait for the stream to finish closing."""
        self.close()
        if self._writer is not None:
            await self._writer.aclose()


__all__ = [
    "EndpointState",
    "PipeEndpoint",
    "default_opener",
    "open_unix_pipe",
    "open_windows_pipe",
    "wait_for_endpoint",
]
