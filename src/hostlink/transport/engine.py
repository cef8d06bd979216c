"""The slice of a remoting engine that a transport session talks to."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from hostlink.errors import TransportErrorEvent
    from hostlink.transport.streams import LineWriter

logger = logging.getLogger(__name__)


@runtime_checkable
class RemotingEngine(Protocol):
    """Callbacks a ``TransportSession`` drives.

    ``handle_data_received`` and ``raise_error_handler`` are invoked from the
    session's reader task; ``set_message_writer`` and ``send_one_item`` from
    ``TransportSession.open``.
    """

    def set_message_writer(self, writer: LineWriter) -> None:
        """Register the outbound channel used for subsequent sends."""
        ...

    def handle_data_received(self, data: str) -> None:
        """Accept one inbound message (one line, terminator removed)."""
        ...

    def raise_error_handler(self, event: TransportErrorEvent) -> None:
        """Report a transport failure detected after connect."""
        ...

    def send_one_item(self) -> None:
        """Send the first pending outbound fragment (the handshake)."""
        ...


class RecordingEngine:
    """In-memory engine that records traffic.

    Outbound messages queued with ``queue_outbound`` are written one per
    ``send_one_item`` call. Useful for diagnostics and as a test double.
    """

    def __init__(self, *outbound: str) -> None:
        self.writer: LineWriter | None = None
        self.received: list[str] = []
        self.errors: list[TransportErrorEvent] = []
        self._outbound: list[str] = list(outbound)

    def queue_outbound(self, message: str) -> None:
        self._outbound.append(message)

    def set_message_writer(self, writer: LineWriter) -> None:
        self.writer = writer

    def handle_data_received(self, data: str) -> None:
        self.received.append(data)

    def raise_error_handler(self, event: TransportErrorEvent) -> None:
        logger.warning("Transport error [%s]: %s", event.code, event.message)
        self.errors.append(event)

    def send_one_item(self) -> None:
        if self.writer is None or not self._outbound:
            return
        self.writer.write_line(self._outbound.pop(0))


__all__ = ["RecordingEngine", "RemotingEngine"]
