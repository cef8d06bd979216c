"""hostlink: line-oriented pipe and subprocess transport for remoting hosts."""

from hostlink.transport import (
    ByExplicitName,
    ByProcessId,
    BySpawnedProcess,
    ConnectionInfo,
    RemotingEngine,
    TransportSession,
)

__version__ = "0.1.0"

__all__ = [
    "ByExplicitName",
    "ByProcessId",
    "BySpawnedProcess",
    "ConnectionInfo",
    "RemotingEngine",
    "TransportSession",
]
