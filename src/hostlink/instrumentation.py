"""Opt-in transport metrics.

Connect outcomes are kept per pipe name, spawn results per executable and
reader traffic per peer. Nothing is recorded unless ``HOSTLINK_INSTRUMENTATION``
is set; ``HOSTLINK_INSTRUMENTATION_LOG`` additionally logs every record as one
JSON line.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from hostlink.errors import ConnectAbortedError, ConnectionTimeoutError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_ENABLED_VALUES = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _ENABLED_VALUES


class ConnectOutcome(StrEnum):
    CONNECTED = "connected"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    FAILED = "failed"


def classify_connect_error(exc: BaseException | None) -> ConnectOutcome:
    """Map how a pipe connect ended to its outcome."""
    if exc is None:
        return ConnectOutcome.CONNECTED
    if isinstance(exc, ConnectionTimeoutError):
        return ConnectOutcome.TIMED_OUT
    if isinstance(exc, (ConnectAbortedError, asyncio.CancelledError)):
        return ConnectOutcome.ABORTED
    return ConnectOutcome.FAILED


@dataclass(slots=True)
class PipeConnectStats:
    """Connect attempts against one pipe name."""

    outcomes: dict[ConnectOutcome, int] = field(default_factory=dict)
    total_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def attempts(self) -> int:
        return sum(self.outcomes.values())

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.attempts if self.attempts else 0.0

    def count(self, outcome: ConnectOutcome) -> int:
        return self.outcomes.get(outcome, 0)


@dataclass(slots=True)
class SpawnStats:
    started: int = 0
    failed: int = 0
    killed: int = 0
    total_ms: float = 0.0


@dataclass(slots=True)
class ReaderStats:
    lines: int = 0
    errors: int = 0


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """A point-in-time copy of everything recorded so far."""

    enabled: bool
    connects: dict[str, PipeConnectStats]
    spawns: dict[str, SpawnStats]
    readers: dict[str, ReaderStats]

    def outcome_total(self, outcome: ConnectOutcome) -> int:
        return sum(stats.count(outcome) for stats in self.connects.values())


class _Registry:
    # Reader tasks on different event loops may record concurrently.
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.enabled = _env_flag("HOSTLINK_INSTRUMENTATION")
        self.log_events = _env_flag("HOSTLINK_INSTRUMENTATION_LOG")
        self.connects: dict[str, PipeConnectStats] = {}
        self.spawns: dict[str, SpawnStats] = {}
        self.readers: dict[str, ReaderStats] = {}

    def emit(self, event: str, **payload: Any) -> None:
        if self.log_events:
            payload["event"] = event
            logger.info("hostlink.metrics %s", json.dumps(payload, sort_keys=True, default=str))


_registry = _Registry()


def configure(*, enabled: bool | None = None, log_events: bool | None = None) -> None:
    """Switch recording and per-record logging on or off at runtime."""
    if enabled is not None:
        _registry.enabled = enabled
    if log_events is not None:
        _registry.log_events = log_events


def reset() -> None:
    with _registry.lock:
        _registry.connects.clear()
        _registry.spawns.clear()
        _registry.readers.clear()


def snapshot() -> MetricsSnapshot:
    with _registry.lock:
        return MetricsSnapshot(
            enabled=_registry.enabled,
            connects={
                pipe: replace(stats, outcomes=dict(stats.outcomes))
                for pipe, stats in _registry.connects.items()
            },
            spawns={name: replace(stats) for name, stats in _registry.spawns.items()},
            readers={peer: replace(stats) for peer, stats in _registry.readers.items()},
        )


def record_connect(pipe: str, outcome: ConnectOutcome, elapsed_ms: float) -> None:
    if not _registry.enabled:
        return
    with _registry.lock:
        stats = _registry.connects.setdefault(pipe, PipeConnectStats())
        stats.outcomes[outcome] = stats.outcomes.get(outcome, 0) + 1
        stats.total_ms += elapsed_ms
        stats.max_ms = max(stats.max_ms, elapsed_ms)
    _registry.emit("connect", pipe=pipe, outcome=outcome.value, elapsed_ms=elapsed_ms)


@contextmanager
def track_connect(pipe: str) -> Iterator[None]:
    """Time a pipe connect and record its outcome from how the block exits."""
    if not _registry.enabled:
        yield
        return
    started_at = time.perf_counter()
    try:
        yield
    except BaseException as exc:
        record_connect(pipe, classify_connect_error(exc), _elapsed_ms(started_at))
        raise
    record_connect(pipe, ConnectOutcome.CONNECTED, _elapsed_ms(started_at))


@contextmanager
def track_spawn(executable: str) -> Iterator[None]:
    """Count a child process start, or its failure, for *executable*."""
    if not _registry.enabled:
        yield
        return
    started_at = time.perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        elapsed_ms = _elapsed_ms(started_at)
        with _registry.lock:
            stats = _registry.spawns.setdefault(executable, SpawnStats())
            if ok:
                stats.started += 1
            else:
                stats.failed += 1
            stats.total_ms += elapsed_ms
        _registry.emit("spawn", executable=executable, ok=ok, elapsed_ms=elapsed_ms)


def record_kill(executable: str, pid: int) -> None:
    if not _registry.enabled:
        return
    with _registry.lock:
        _registry.spawns.setdefault(executable, SpawnStats()).killed += 1
    _registry.emit("kill", executable=executable, pid=pid)


def record_line(peer: str) -> None:
    # Aggregated only, never logged per line.
    if not _registry.enabled:
        return
    with _registry.lock:
        _registry.readers.setdefault(peer, ReaderStats()).lines += 1


def record_reader_error(peer: str, code: str) -> None:
    if not _registry.enabled:
        return
    with _registry.lock:
        _registry.readers.setdefault(peer, ReaderStats()).errors += 1
    _registry.emit("reader_error", peer=peer, code=code)


def _elapsed_ms(started_at: float) -> float:
    return (time.perf_counter() - started_at) * 1000.0


__all__ = [
    "ConnectOutcome",
    "MetricsSnapshot",
    "PipeConnectStats",
    "ReaderStats",
    "SpawnStats",
    "classify_connect_error",
    "configure",
    "record_connect",
    "record_kill",
    "record_line",
    "record_reader_error",
    "reset",
    "snapshot",
    "track_connect",
    "track_spawn",
]
