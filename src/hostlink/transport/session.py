"""Binds a connected line stream to a remoting engine.

The session registers the outbound writer with the engine and runs one
reader task that hands every inbound line to the engine, in order, until the
stream ends or fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from hostlink.constants import READER_TASK_NAME
from hostlink.errors import (
    AlreadyDisposedError,
    TransportErrorEvent,
    TransportIOError,
    TransportMethod,
)
from hostlink.instrumentation import record_line, record_reader_error

if TYPE_CHECKING:
    from hostlink.transport.connection import ConnectionInfo
    from hostlink.transport.engine import RemotingEngine
    from hostlink.transport.streams import LineReader

logger = logging.getLogger(__name__)


class ReaderState(StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED_NORMAL = "stopped_normal"
    STOPPED_ERROR = "stopped_error"


class TransportSession:
    """Client transport over a ``ConnectionInfo``.

    Usage::

        info = ConnectionInfo.for_process_id(pid, timeout_ms=5000)
        async with info.create_session(engine) as session:
            ...
            await session.wait_reader()

    ``close`` tears down the stream; ``dispose`` (and leaving the ``async with``
    block) additionally kills a child process the connection started.
    """

    def __init__(self, connection_info: ConnectionInfo, engine: RemotingEngine) -> None:
        if connection_info is None:
            msg = "connection_info is required"
            raise ValueError(msg)
        self._connection_info = connection_info
        self._engine = engine
        self._reader_task: asyncio.Task[None] | None = None
        self._reader_state = ReaderState.NOT_STARTED
        self._closing = False
        self._closed = False

    async def __aenter__(self) -> TransportSession:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.dispose()

    @property
    def connection_info(self) -> ConnectionInfo:
        return self._connection_info

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def reader_state(self) -> ReaderState:
        return self._reader_state

    @property
    def stderr_tail(self) -> list[str]:
        return self._connection_info.stderr_tail

    async def open(self) -> None:
        """Connect, wire the writer into the engine, start reading, then handshake.

        Connect failures propagate to the caller unchanged.
        """
        if self._closed:
            raise AlreadyDisposedError("Transport session")
        if self._reader_task is not None:
            msg = "Transport session is already open"
            raise RuntimeError(msg)

        reader, writer = await self._connection_info.connect()
        self._engine.set_message_writer(writer)
        self._start_reader(reader)
        # Let the reader reach its first read before the peer can answer.
        await asyncio.sleep(0)
        try:
            self._engine.send_one_item()
        except BaseException:
            await self.close()
            raise

    def _start_reader(self, reader: LineReader) -> None:
        self._reader_state = ReaderState.RUNNING
        self._reader_task = asyncio.create_task(self._read_loop(reader), name=READER_TASK_NAME)

    async def _read_loop(self, reader: LineReader) -> None:
        peer = self._connection_info.computer_name
        received = 0
        try:
            while True:
                line = await reader.read_line()
                if line is None:
                    # The peer closed, or the transport broke from its side. Any
                    # diagnosis belongs to whoever watches the peer's error stream.
                    logger.info("Reader for %s hit end of stream after %d lines", peer, received)
                    self._reader_state = ReaderState.STOPPED_NORMAL
                    return
                received += 1
                record_line(peer)
                logger.debug("Received line #%d from %s (%d chars)", received, peer, len(line))
                self._engine.handle_data_received(line)
        except asyncio.CancelledError:
            self._reader_state = ReaderState.STOPPED_NORMAL
            raise
        except Exception as exc:
            if self._closing:
                # Stream disposed underneath an orderly shutdown.
                logger.debug("Reader for %s stopped during close: %r", peer, exc)
                self._reader_state = ReaderState.STOPPED_NORMAL
                return
            self._reader_state = ReaderState.STOPPED_ERROR
            await self._handle_reader_error(exc)

    async def _handle_reader_error(self, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        error = TransportIOError(
            f"The transport session has ended reader task with message: {message}"
        )
        error.__cause__ = exc
        peer = self._connection_info.computer_name
        record_reader_error(peer, error.code)
        logger.warning("Reader for %s failed: %s", peer, message)
        event = TransportErrorEvent(error=error, method=TransportMethod.CLOSE_SHELL_OPERATION_EX)
        try:
            self._engine.raise_error_handler(event)
        except Exception:
            logger.exception("Engine error handler raised while reporting %s", error.code)
        finally:
            await self.close()

    async def wait_reader(self) -> ReaderState:
        """Wait for the reader task to stop and return how it stopped."""
        task = self._reader_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})
        return self._reader_state

    async def close(self) -> None:
        """Stop the reader and close the connection; idempotent."""
        if self._closed:
            return
        self._closed = True
        self._closing = True

        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._connection_info.stop_connect()
        logger.info("Closed transport session for %s", self._connection_info.computer_name)

    async def dispose(self) -> None:
        """Close the session and release the process the connection owns."""
        await self.close()
        await self._connection_info.dispose()


__all__ = ["ReaderState", "TransportSession"]
