"""Diagnostic commands: pipe naming, executable lookup, interactive connect."""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import TYPE_CHECKING, NoReturn

import click

from hostlink.config import Settings
from hostlink.errors import TransportError
from hostlink.transport.connection import ConnectionInfo
from hostlink.transport.engine import RecordingEngine
from hostlink.transport.naming import create_process_pipe_name, pipe_address
from hostlink.transport.process import resolve_pwsh_path

if TYPE_CHECKING:
    from hostlink.errors import TransportErrorEvent


def _fail(message: str) -> NoReturn:
    click.secho(message, fg="red", err=True)
    sys.exit(1)


@click.command("pipe-name")
@click.argument("pid", type=int)
def pipe_name(pid: int) -> None:
    """Print the named pipe a host process PID listens on."""
    try:
        name = create_process_pipe_name(pid)
    except TransportError as exc:
        _fail(f"{exc} [{exc.code}]")
    click.echo(f"  Name:    {name}")
    click.echo(f"  Address: {pipe_address(name)}")


@click.command()
@click.option(
    "--current",
    "current_executable",
    default=None,
    help="Path of the running host; used when its name matches.",
)
def locate(current_executable: str | None) -> None:
    """Print the peer host executable that a spawn would use."""
    settings = Settings.load()
    path = settings.executable_path or resolve_pwsh_path(
        current_executable, executable_name=settings.executable_name
    )
    if path is None:
        _fail(f"{settings.executable_name} was not found on PATH")
    click.echo(path)


class EchoEngine(RecordingEngine):
    """Recording engine that also prints traffic to the terminal."""

    def handle_data_received(self, data: str) -> None:
        super().handle_data_received(data)
        click.echo(data)

    def raise_error_handler(self, event: TransportErrorEvent) -> None:
        super().raise_error_handler(event)
        click.secho(f"Transport error [{event.code}]: {event.message}", fg="red", err=True)


def _start_stdin_pump(queue: asyncio.Queue[str | None]) -> None:
    loop = asyncio.get_running_loop()

    def _pump() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\r\n"))
        loop.call_soon_threadsafe(queue.put_nowait, None)

    # Daemon thread: a blocked stdin read must not keep the process alive.
    threading.Thread(target=_pump, name="hostlink-stdin", daemon=True).start()


async def _forward_stdin(engine: EchoEngine) -> None:
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_pump(queue)
    while (line := await queue.get()) is not None:
        if engine.writer is None:
            return
        await engine.writer.send(line)


async def _run_session(info: ConnectionInfo, engine: EchoEngine, *, forward_stdin: bool) -> int:
    async with info.create_session(engine) as session:
        waiters = {asyncio.create_task(session.wait_reader())}
        if forward_stdin:
            waiters.add(asyncio.create_task(_forward_stdin(engine)))
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()
        stderr_tail = session.stderr_tail
    if engine.errors and stderr_tail:
        click.secho("Last stderr lines:", fg="yellow", err=True)
        for line in stderr_tail:
            click.echo(f"  {line}", err=True)
    return 1 if engine.errors else 0


@click.command()
@click.option("--pid", type=int, default=None, help="Attach to the pipe of this host process.")
@click.option("--name", default=None, help="Attach to this pipe name.")
@click.option("--spawn", is_flag=True, help="Start a peer host and talk to it.")
@click.option(
    "--channel",
    type=click.Choice(["stdio", "pipe"]),
    default="stdio",
    show_default=True,
    help="How to reach a spawned host.",
)
@click.option("--executable", default=None, help="Peer executable for --spawn.")
@click.option(
    "--arg",
    "arguments",
    multiple=True,
    help="Argument for the spawned host (repeatable); replaces the configured ones.",
)
@click.option("--timeout", "timeout_ms", type=int, default=None, help="Connect timeout in ms.")
@click.option("--hello", default=None, help="Line to send as the handshake.")
@click.option("--no-stdin", is_flag=True, help="Do not forward standard input.")
def connect(
    pid: int | None,
    name: str | None,
    spawn: bool,
    channel: str,
    executable: str | None,
    arguments: tuple[str, ...],
    timeout_ms: int | None,
    hello: str | None,
    no_stdin: bool,
) -> None:
    """Open a transport session and echo every line received."""
    chosen = [flag for flag, value in (("--pid", pid), ("--name", name)) if value is not None]
    if spawn:
        chosen.append("--spawn")
    if len(chosen) != 1:
        raise click.UsageError("Pass exactly one of --pid, --name or --spawn")

    settings = Settings.load()
    engine = EchoEngine(*([hello] if hello is not None else []))
    try:
        if pid is not None:
            info = ConnectionInfo.for_process_id(pid, timeout_ms=timeout_ms, settings=settings)
        elif name is not None:
            info = ConnectionInfo.for_pipe_name(name, timeout_ms=timeout_ms, settings=settings)
        else:
            info = ConnectionInfo.for_subprocess(
                executable,
                list(arguments) if arguments else None,
                channel="pipe" if channel == "pipe" else "stdio",
                timeout_ms=timeout_ms,
                settings=settings,
            )
        exit_code = asyncio.run(_run_session(info, engine, forward_stdin=not no_stdin))
    except TransportError as exc:
        _fail(f"{exc} [{exc.code}]")
    except ValueError as exc:
        _fail(str(exc))
    sys.exit(exit_code)


__all__ = ["EchoEngine", "connect", "locate", "pipe_name"]
