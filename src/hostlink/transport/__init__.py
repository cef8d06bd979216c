"""Pipe and subprocess transports for remoting hosts."""

from hostlink.transport.connection import (
    ByExplicitName,
    ByProcessId,
    BySpawnedProcess,
    ConnectionInfo,
    ConnectionState,
    ConnectionTarget,
)
from hostlink.transport.engine import RecordingEngine, RemotingEngine
from hostlink.transport.naming import create_process_pipe_name, derive_pipe_name
from hostlink.transport.pipe import EndpointState, PipeEndpoint
from hostlink.transport.process import ProcessHandle, ProcessHost, resolve_pwsh_path
from hostlink.transport.session import ReaderState, TransportSession
from hostlink.transport.streams import LineReader, LineWriter

__all__ = [
    "ByExplicitName",
    "ByProcessId",
    "BySpawnedProcess",
    "ConnectionInfo",
    "ConnectionState",
    "ConnectionTarget",
    "EndpointState",
    "LineReader",
    "LineWriter",
    "PipeEndpoint",
    "ProcessHandle",
    "ProcessHost",
    "ReaderState",
    "RecordingEngine",
    "RemotingEngine",
    "TransportSession",
    "create_process_pipe_name",
    "derive_pipe_name",
    "resolve_pwsh_path",
]
