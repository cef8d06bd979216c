"""Tests for pipe name derivation from process identity."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from types import SimpleNamespace

import psutil
import pytest
from hypothesis import given
from hypothesis import strategies as st

from hostlink.errors import ProcessNotFoundError
from hostlink.transport import naming
from hostlink.transport.naming import (
    create_process_pipe_name,
    derive_pipe_name,
    encode_start_time,
    filetime_from_timestamp,
    pipe_address,
    resolve_process_identity,
)

_FILETIME_UNIX_EPOCH = 0x019DB1DED53E8000
_ODD_FILETIME = 133_700_000_000_000_001

pids = st.integers(min_value=1, max_value=2**22)
start_filetimes = st.integers(
    min_value=_FILETIME_UNIX_EPOCH, max_value=_FILETIME_UNIX_EPOCH + 4_000_000_000 * 10**7
)
image_names = st.from_regex(r"[A-Za-z0-9]{1,16}", fullmatch=True)


def test_filetime_of_unix_epoch() -> None:
    assert filetime_from_timestamp(0.0) == _FILETIME_UNIX_EPOCH


def test_filetime_counts_100ns_ticks() -> None:
    assert filetime_from_timestamp(1.5) - filetime_from_timestamp(0.0) == 15_000_000


def test_windows_start_time_is_full_decimal() -> None:
    assert encode_start_time(_FILETIME_UNIX_EPOCH, windows=True) == "116444736000000000"


def test_posix_start_time_keeps_hex_characters_one_to_nine() -> None:
    assert encode_start_time(_FILETIME_UNIX_EPOCH, windows=False) == "9DB1DED5"


def test_derive_pipe_name_windows_format() -> None:
    name = derive_pipe_name(1234, _FILETIME_UNIX_EPOCH, "pwsh", windows=True)

    assert name == "PSHost.116444736000000000.1234.DefaultAppDomain.pwsh"


def test_derive_pipe_name_windows_keeps_every_tick() -> None:
    name = derive_pipe_name(1234, _ODD_FILETIME, "pwsh", windows=True)

    assert name == "PSHost.133700000000000001.1234.DefaultAppDomain.pwsh"


@given(offset=st.integers(min_value=0, max_value=999))
def test_windows_name_round_trips_consecutive_ticks(offset: int) -> None:
    filetime = 133_700_000_000_000_000 + offset

    segment = derive_pipe_name(1234, filetime, "pwsh", windows=True).split(".")[1]

    assert int(segment) == filetime


def test_derive_pipe_name_posix_format() -> None:
    name = derive_pipe_name(1234, _FILETIME_UNIX_EPOCH, "pwsh", windows=False)

    assert name == "PSHost.9DB1DED5.1234.DefaultAppDomain.pwsh"


@given(pid=pids, start=start_filetimes, image=image_names, windows=st.booleans())
def test_derive_pipe_name_is_deterministic(
    pid: int, start: int, image: str, windows: bool
) -> None:
    first = derive_pipe_name(pid, start, image, windows=windows)
    second = derive_pipe_name(pid, start, image, windows=windows)

    assert first == second
    assert first.startswith("PSHost.")
    assert first.endswith(f".{pid}.DefaultAppDomain.{image}")


@given(pid=pids, other=pids, start=start_filetimes, windows=st.booleans())
def test_different_pids_give_different_names(
    pid: int, other: int, start: int, windows: bool
) -> None:
    if pid == other:
        return
    assert derive_pipe_name(pid, start, "pwsh", windows=windows) != derive_pipe_name(
        other, start, "pwsh", windows=windows
    )


@given(start=start_filetimes, later=st.integers(min_value=1, max_value=10**6))
def test_different_start_ticks_give_different_windows_names(start: int, later: int) -> None:
    first = derive_pipe_name(42, start, "pwsh", windows=True)
    second = derive_pipe_name(42, start + later, "pwsh", windows=True)

    assert first != second


@given(start=start_filetimes)
def test_posix_start_time_segment_is_eight_uppercase_hex_digits(start: int) -> None:
    segment = derive_pipe_name(7, start, "pwsh", windows=False).split(".")[1]

    assert len(segment) == 8
    assert all(ch in "0123456789ABCDEF" for ch in segment)


def test_resolve_process_identity_for_current_process() -> None:
    identity = resolve_process_identity(os.getpid())
    current = psutil.Process(os.getpid())

    assert identity.pid == os.getpid()
    if sys.platform != "win32":
        assert identity.start_filetime == filetime_from_timestamp(current.create_time())
    assert identity.image_name


def test_resolve_process_identity_uses_exact_windows_filetime(monkeypatch) -> None:
    monkeypatch.setattr(sys, "platform", "win32")
    monkeypatch.setattr(naming, "_windows_creation_filetime", lambda pid: _ODD_FILETIME)

    identity = resolve_process_identity(os.getpid())
    name = derive_pipe_name(
        identity.pid, identity.start_filetime, identity.image_name, windows=True
    )

    assert identity.start_filetime == _ODD_FILETIME
    assert name.split(".")[1] == "133700000000000001"


def test_resolve_process_identity_falls_back_when_windows_query_fails(
    monkeypatch, caplog
) -> None:
    monkeypatch.setattr(sys, "platform", "win32")
    monkeypatch.setattr(naming, "_windows_creation_filetime", lambda pid: None)

    identity = resolve_process_identity(os.getpid())

    expected = filetime_from_timestamp(psutil.Process(os.getpid()).create_time())
    assert identity.start_filetime == expected
    assert "GetProcessTimes failed" in caplog.text


def test_create_process_pipe_name_matches_derivation() -> None:
    identity = resolve_process_identity(os.getpid())

    name = create_process_pipe_name(os.getpid(), windows=False)

    assert name == derive_pipe_name(
        identity.pid, identity.start_filetime, identity.image_name, windows=False
    )


def test_create_process_pipe_name_rejects_invalid_pid() -> None:
    with pytest.raises(ProcessNotFoundError) as exc_info:
        create_process_pipe_name(-1)

    assert exc_info.value.pid == -1
    assert exc_info.value.code == "PROCESS_NOT_FOUND"


def test_create_process_pipe_name_rejects_exited_process(monkeypatch) -> None:
    def _gone(pid: int):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(naming.psutil, "Process", _gone)

    with pytest.raises(ProcessNotFoundError):
        create_process_pipe_name(424242)


def test_image_name_strips_exe_on_windows(monkeypatch) -> None:
    monkeypatch.setattr(sys, "platform", "win32")
    process = SimpleNamespace(name=lambda: "pwsh.EXE")

    assert naming._image_name(process) == "pwsh"


def test_image_name_kept_verbatim_elsewhere(monkeypatch) -> None:
    monkeypatch.setattr(sys, "platform", "linux")
    process = SimpleNamespace(name=lambda: "pwsh.exe")

    assert naming._image_name(process) == "pwsh.exe"


def test_pipe_address_windows() -> None:
    assert pipe_address("PSHost.1.2.DefaultAppDomain.pwsh", windows=True) == (
        "\\\\.\\pipe\\PSHost.1.2.DefaultAppDomain.pwsh"
    )


def test_pipe_address_posix_uses_corefx_socket(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(naming, "get_pipe_socket_dir", lambda: tmp_path)

    address = pipe_address("demo", windows=False)

    assert address == str(tmp_path / "CoreFxPipe_demo")
