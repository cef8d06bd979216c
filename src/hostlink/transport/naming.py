"""Deterministic named-pipe naming from a target process's identity.

A PowerShell-compatible host listens on a pipe named::

    PSHost.<start time>.<pid>.DefaultAppDomain.<process name>

The start time is the process creation time as a Windows FILETIME. Windows
renders it in full decimal; other platforms render it as uppercase hex and
keep characters ``[1:9]`` so the resulting socket path stays short. Both
sides compute the name independently, so this encoding must not drift.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

import psutil

from hostlink.constants import (
    COREFX_PIPE_PREFIX,
    PIPE_NAME_APP_DOMAIN,
    PIPE_NAME_DELIMITER,
    PIPE_NAME_PREFIX,
    WINDOWS_PIPE_ROOT,
)
from hostlink.errors import ProcessNotFoundError
from hostlink.paths import get_pipe_socket_dir

logger = logging.getLogger(__name__)

# 100 ns ticks between 1601-01-01 and 1970-01-01 (UTC).
_FILETIME_EPOCH_OFFSET = 116_444_736_000_000_000
_FILETIME_TICKS_PER_SECOND = 10_000_000


@dataclass(frozen=True)
class ProcessIdentity:
    """The fields of a process that feed its pipe name."""

    pid: int
    start_filetime: int
    image_name: str


def _is_windows(windows: bool | None) -> bool:
    return sys.platform == "win32" if windows is None else windows


def filetime_from_timestamp(timestamp: float) -> int:
    """Convert POSIX seconds to a Windows FILETIME tick count.

    A float cannot hold today's timestamps to the tick, so the result is only
    exact enough for the POSIX encoding, which drops the low digits.
    """
    return _FILETIME_EPOCH_OFFSET + int(timestamp * _FILETIME_TICKS_PER_SECOND)


def encode_start_time(filetime: int, *, windows: bool | None = None) -> str:
    """Render a FILETIME the way the pipe server does on the given platform."""
    if _is_windows(windows):
        return str(filetime)
    return format(filetime, "X8")[1:9]


def derive_pipe_name(
    pid: int,
    start_filetime: int,
    image_name: str,
    *,
    windows: bool | None = None,
) -> str:
    """Build the endpoint name for a process identity.

    Args:
        pid: Process id of the pipe server.
        start_filetime: Process creation time as FILETIME ticks. Windows
            renders every digit, so this must be the exact tick count.
        image_name: Process name without directory (and without ``.exe``).
        windows: Force the Windows (``True``) or POSIX (``False``) encoding;
            defaults to the running platform.
    """
    encoded = encode_start_time(start_filetime, windows=windows)
    return PIPE_NAME_DELIMITER.join(
        (PIPE_NAME_PREFIX, encoded, str(pid), PIPE_NAME_APP_DOMAIN, image_name)
    )


def _image_name(process: psutil.Process) -> str:
    name = process.name()
    # .NET's Process.ProcessName drops the extension on Windows.
    if sys.platform == "win32":
        stem, ext = os.path.splitext(name)
        if ext.lower() == ".exe":
            return stem
    return name


def _windows_creation_filetime(pid: int) -> int | None:
    import ctypes
    from ctypes import wintypes

    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    kernel32.OpenProcess.restype = wintypes.HANDLE
    access = 0x1000  # PROCESS_QUERY_LIMITED_INFORMATION
    handle = kernel32.OpenProcess(access, False, pid)
    if not handle:
        return None
    try:
        creation = wintypes.FILETIME()
        exited = wintypes.FILETIME()
        kernel = wintypes.FILETIME()
        user = wintypes.FILETIME()
        ok = kernel32.GetProcessTimes(
            wintypes.HANDLE(handle),
            ctypes.byref(creation),
            ctypes.byref(exited),
            ctypes.byref(kernel),
            ctypes.byref(user),
        )
        if not ok:
            return None
        return (creation.dwHighDateTime << 32) | creation.dwLowDateTime
    finally:
        kernel32.CloseHandle(wintypes.HANDLE(handle))


def _start_filetime(pid: int, create_time: float) -> int:
    if sys.platform == "win32":
        exact = _windows_creation_filetime(pid)
        if exact is not None:
            return exact
        logger.warning("GetProcessTimes failed for pid %d; pipe name may not match", pid)
    return filetime_from_timestamp(create_time)


def resolve_process_identity(pid: int) -> ProcessIdentity:
    """Read start time and image name of a running process.

    Raises:
        ProcessNotFoundError: If no process with *pid* exists.
    """
    try:
        process = psutil.Process(pid)
        with process.oneshot():
            create_time = process.create_time()
            image_name = _image_name(process)
    except (psutil.NoSuchProcess, ValueError) as exc:
        raise ProcessNotFoundError(pid) from exc
    return ProcessIdentity(
        pid=pid,
        start_filetime=_start_filetime(pid, create_time),
        image_name=image_name,
    )


def create_process_pipe_name(pid: int, *, windows: bool | None = None) -> str:
    """Return the pipe name a host process with *pid* listens on."""
    identity = resolve_process_identity(pid)
    name = derive_pipe_name(
        identity.pid,
        identity.start_filetime,
        identity.image_name,
        windows=windows,
    )
    logger.debug("Derived pipe name %s for pid %d", name, pid)
    return name


def pipe_address(name: str, *, windows: bool | None = None) -> str:
    """Return the OS address of the named pipe *name*.

    Windows uses the pipe namespace; elsewhere .NET backs named pipes with a
    Unix domain socket in the temp directory.
    """
    if _is_windows(windows):
        return f"{WINDOWS_PIPE_ROOT}{name}"
    return str(get_pipe_socket_dir() / f"{COREFX_PIPE_PREFIX}{name}")


__all__ = [
    "ProcessIdentity",
    "create_process_pipe_name",
    "derive_pipe_name",
    "encode_start_time",
    "filetime_from_timestamp",
    "pipe_address",
    "resolve_process_identity",
]
