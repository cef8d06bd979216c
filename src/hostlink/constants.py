"""Shared transport constants - no circular dependencies."""

from __future__ import annotations

PIPE_NAME_PREFIX = "PSHost"
PIPE_NAME_APP_DOMAIN = "DefaultAppDomain"
PIPE_NAME_DELIMITER = "."

# .NET maps named pipes onto Unix domain sockets with this file prefix.
COREFX_PIPE_PREFIX = "CoreFxPipe_"
WINDOWS_PIPE_ROOT = "\\\\.\\pipe\\"

CONNECT_POLL_INTERVAL_SECONDS = 0.1
INFINITE_TIMEOUT_MS = -1
MAX_TIMEOUT_MS = 2**31 - 1  # Int32.MaxValue; treated as "no deadline"

DEFAULT_SUBPROCESS_CONNECT_TIMEOUT_MS = 5 * 1000

MAX_LINE_BYTES = 4 * 1024 * 1024  # 4 MiB per line (without framing overhead)
STREAM_LIMIT_BYTES = MAX_LINE_BYTES + 1  # Include trailing newline separator.

STDERR_TAIL_LINES = 200

READER_TASK_NAME = "hostlink-reader"
STDERR_TASK_NAME = "hostlink-stderr"

PWSH_EXECUTABLE = "pwsh"
DEFAULT_SERVER_ARGUMENTS = "-NoLogo -NoProfile -s"
DEFAULT_PIPE_ARGUMENTS = "-NoLogo -NoProfile"

__all__ = [
    "CONNECT_POLL_INTERVAL_SECONDS",
    "COREFX_PIPE_PREFIX",
    "DEFAULT_PIPE_ARGUMENTS",
    "DEFAULT_SERVER_ARGUMENTS",
    "DEFAULT_SUBPROCESS_CONNECT_TIMEOUT_MS",
    "INFINITE_TIMEOUT_MS",
    "MAX_LINE_BYTES",
    "MAX_TIMEOUT_MS",
    "PIPE_NAME_APP_DOMAIN",
    "PIPE_NAME_DELIMITER",
    "PIPE_NAME_PREFIX",
    "PWSH_EXECUTABLE",
    "READER_TASK_NAME",
    "STDERR_TAIL_LINES",
    "STDERR_TASK_NAME",
    "STREAM_LIMIT_BYTES",
    "WINDOWS_PIPE_ROOT",
]
