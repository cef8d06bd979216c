"""Line-oriented wrappers around asyncio byte streams.

One message is one line. Writes are handed to the transport immediately;
reads return ``None`` at end of stream instead of raising.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from hostlink.errors import AlreadyDisposedError, TransportIOError

logger = logging.getLogger(__name__)

_LINE_TERMINATORS = ("\n", "\r")


class LineReader:
    """Reads newline-terminated text messages from a stream."""

    def __init__(self, reader: asyncio.StreamReader, *, encoding: str = "utf-8") -> None:
        self._reader = reader
        self._encoding = encoding

    @property
    def stream(self) -> asyncio.StreamReader:
        return self._reader

    async def read_line(self) -> str | None:
        """Return the next line without its terminator, or ``None`` at EOF.

        A trailing fragment without a terminator is returned as a final line.

        Raises:
            ValueError: If a line exceeds the stream's buffer limit.
            UnicodeDecodeError: If a line is not valid in the configured encoding.
        """
        raw = await self._reader.readline()
        if not raw:
            return None
        line = raw.decode(self._encoding)
        if line.endswith("\n"):
            line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
        return line


class LineWriter:
    """Writes text messages as single lines, one write per message."""

    def __init__(self, writer: asyncio.StreamWriter, *, encoding: str = "utf-8") -> None:
        self._writer = writer
        self._encoding = encoding
        self._closed = False

    @property
    def stream(self) -> asyncio.StreamWriter:
        return self._writer

    @property
    def is_closed(self) -> bool:
        return self._closed

    def write_line(self, message: str) -> None:
        """Send *message* followed by a newline.

        The bytes are passed to the transport right away; there is no
        application-level batching.

        Raises:
            ValueError: If *message* contains a line terminator.
            AlreadyDisposedError: If this writer was closed.
            TransportIOError: If the peer side of the stream is gone.
        """
        if any(term in message for term in _LINE_TERMINATORS):
            msg = "Message must not contain an embedded line terminator"
            raise ValueError(msg)
        if self._closed:
            raise AlreadyDisposedError("Line writer")
        if self._writer.is_closing():
            msg = "Cannot write: the stream is closing"
            raise TransportIOError(msg)
        try:
            self._writer.write((message + "\n").encode(self._encoding))
        except (ConnectionError, OSError) as exc:
            msg = f"Write failed: {exc}"
            raise TransportIOError(msg) from exc

    async def drain(self) -> None:
        """Wait until the transport's write buffer has been flushed."""
        try:
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            msg = f"Flush failed: {exc}"
            raise TransportIOError(msg) from exc

    async def send(self, message: str) -> None:
        """Write one line and wait for it to be flushed."""
        self.write_line(message)
        await self.drain()

    def close(self) -> None:
        """Close the underlying stream; safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(ConnectionError, OSError, RuntimeError):
            self._writer.close()

    async def aclose(self) -> None:
        """Close the stream and wait for the transport to finish closing."""
        self.close()
        with contextlib.suppress(ConnectionError, OSError, RuntimeError):
            await self._writer.wait_closed()


__all__ = ["LineReader", "LineWriter"]
