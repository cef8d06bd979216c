"""Sessions with real child processes over stdio and over a spawned pipe server."""

from __future__ import annotations

import contextlib
import os
import sys

import pytest

from hostlink.errors import ConnectionTimeoutError
from hostlink.transport.connection import BySpawnedProcess, ConnectionInfo
from hostlink.transport.engine import RecordingEngine
from hostlink.transport.process import ProcessHandle, ProcessHost
from hostlink.transport.session import ReaderState
from tests.helpers import wait_until

pytestmark = pytest.mark.integration

_ECHO_SERVER = """
import sys
print("ready", flush=True)
for line in sys.stdin:
    line = line.rstrip("\\n")
    if line == "quit":
        break
    if line == "fail":
        print("boom: unrecoverable", file=sys.stderr, flush=True)
        sys.exit(3)
    print("echo:" + line, flush=True)
"""

_PIPE_SERVER = """
import asyncio, os
from hostlink.transport.naming import create_process_pipe_name, pipe_address

async def handle(reader, writer):
    writer.write(b"ready\\n")
    await writer.drain()
    line = await reader.readline()
    writer.write(b"echo:" + line)
    await writer.drain()
    writer.close()

async def main():
    await asyncio.sleep(0.3)
    path = pipe_address(create_process_pipe_name(os.getpid()))
    server = await asyncio.start_unix_server(handle, path)
    async with server:
        await asyncio.sleep(30)

asyncio.run(main())
"""


class _TrackingHost(ProcessHost):
    def __init__(self) -> None:
        super().__init__()
        self.spawned: list[ProcessHandle] = []

    async def spawn(self, executable, arguments=(), **kwargs) -> ProcessHandle:
        handle = await super().spawn(executable, arguments, **kwargs)
        self.spawned.append(handle)
        return handle


def _stdio_info(script: str, host: ProcessHost | None = None) -> ConnectionInfo:
    return ConnectionInfo(
        BySpawnedProcess(executable=sys.executable, arguments=("-c", script)),
        process_host=host,
    )


async def test_stdio_session_round_trip() -> None:
    info = _stdio_info(_ECHO_SERVER)
    engine = RecordingEngine("hello")

    async with info.create_session(engine) as session:
        assert info.computer_name == f"Subprocess:{info.process.pid}"
        await wait_until(lambda: len(engine.received) == 2, description="echo of handshake")
        assert engine.received == ["ready", "echo:hello"]

        engine.writer.write_line("quit")
        assert await session.wait_reader() is ReaderState.STOPPED_NORMAL

    assert engine.errors == []
    assert info.process.exited


async def test_child_exit_leaves_stderr_tail_for_diagnosis() -> None:
    info = _stdio_info(_ECHO_SERVER)
    engine = RecordingEngine("fail")

    async with info.create_session(engine) as session:
        assert await session.wait_reader() is ReaderState.STOPPED_NORMAL
        await wait_until(
            lambda: "boom: unrecoverable" in session.stderr_tail, description="stderr tail"
        )

    assert engine.received == ["ready"]
    assert engine.errors == []


async def test_dispose_kills_owned_child() -> None:
    host = _TrackingHost()
    info = _stdio_info("import time; time.sleep(60)", host)
    session = info.create_session(RecordingEngine())

    await session.open()
    handle = host.spawned[0]
    assert not handle.exited

    await session.dispose()

    assert handle.exited
    assert handle.released


async def test_failed_connect_to_spawned_pipe_kills_child() -> None:
    host = _TrackingHost()
    info = ConnectionInfo(
        BySpawnedProcess(
            executable=sys.executable,
            arguments=("-c", "import time; time.sleep(60)"),
            channel="pipe",
        ),
        timeout_ms=300,
        process_host=host,
    )

    with pytest.raises(ConnectionTimeoutError):
        await info.connect()

    assert len(host.spawned) == 1
    assert host.spawned[0].exited
    assert info.process is None


@pytest.mark.skipif(
    sys.platform != "linux", reason="pipe socket path must fit the sun_path limit"
)
async def test_spawned_pipe_server_is_awaited_until_listening() -> None:
    info = ConnectionInfo(
        BySpawnedProcess(executable=sys.executable, arguments=("-c", _PIPE_SERVER), channel="pipe"),
        timeout_ms=10_000,
    )
    engine = RecordingEngine("hello")
    address = None
    try:
        async with info.create_session(engine) as session:
            address = info.endpoint.address
            assert await session.wait_reader() is ReaderState.STOPPED_NORMAL
    finally:
        if address is not None:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(address)

    assert engine.received == ["ready", "echo:hello"]
    assert engine.errors == []
