"""Transport error taxonomy with machine-readable codes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TransportError(Exception):
    """Base for transport failures with a machine-readable code."""

    code: str = "TRANSPORT_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ProcessNotFoundError(TransportError):
    """Raised when the process used for pipe naming no longer exists."""

    code = "PROCESS_NOT_FOUND"

    def __init__(self, pid: int) -> None:
        super().__init__(f"No process with id {pid} is running")
        self.pid = pid


class ConnectionTimeoutError(TransportError, TimeoutError):
    """Raised when the connect deadline elapses before the endpoint accepts."""

    code = "CONNECT_TIMEOUT"

    def __init__(self, endpoint: str, timeout_ms: int) -> None:
        super().__init__(
            f"Timeout expired after {timeout_ms} ms before connection could be made "
            f"to named pipe {endpoint}"
        )
        self.endpoint = endpoint
        self.timeout_ms = timeout_ms


class ConnectAbortedError(TransportError):
    """Raised when an in-flight connect is cancelled through ``abort_connect``."""

    code = "CONNECT_ABORTED"

    def __init__(self, endpoint: str) -> None:
        super().__init__(f"Connection attempt to named pipe {endpoint} was aborted")
        self.endpoint = endpoint


class ConnectionFailedError(TransportError):
    """Raised when the endpoint is unreachable or refuses the connection."""

    code = "CONNECT_FAILED"

    def __init__(self, endpoint: str, cause: BaseException) -> None:
        super().__init__(f"Failed to connect to named pipe {endpoint}: {cause}")
        self.endpoint = endpoint
        self.__cause__ = cause


class SpawnError(TransportError):
    """Raised when the child process cannot be found or started."""

    code = "SPAWN_FAILED"

    def __init__(self, executable: str, cause: BaseException) -> None:
        super().__init__(f"Failed to start {executable}: {cause}")
        self.executable = executable
        self.__cause__ = cause


class TransportIOError(TransportError):
    """Raised for read/write failures on an established connection."""

    code = "TRANSPORT_IO"


class AlreadyDisposedError(TransportError):
    """Raised when an operation targets a torn-down connection or session."""

    code = "ALREADY_DISPOSED"

    def __init__(self, what: str) -> None:
        super().__init__(f"{what} has already been closed")


class TransportMethod(StrEnum):
    """Transport operation during which an error event was raised."""

    CREATE_SHELL_EX = "create_shell_ex"
    RECEIVE_SHELL_OUTPUT_EX = "receive_shell_output_ex"
    CLOSE_SHELL_OPERATION_EX = "close_shell_operation_ex"


@dataclass(frozen=True)
class TransportErrorEvent:
    """Error payload delivered through the engine's error hook.

    Attributes:
        error: The transport exception describing the failure.
        method: The transport operation that was in progress.
    """

    error: TransportError
    method: TransportMethod = TransportMethod.CLOSE_SHELL_OPERATION_EX

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def message(self) -> str:
        return str(self.error)


__all__ = [
    "AlreadyDisposedError",
    "ConnectAbortedError",
    "ConnectionFailedError",
    "ConnectionTimeoutError",
    "ProcessNotFoundError",
    "SpawnError",
    "TransportError",
    "TransportErrorEvent",
    "TransportIOError",
    "TransportMethod",
]
