"""Argument-string parsing for spawned peer hosts.

Configured argument strings (``Settings.server_arguments`` and friends) are
split with Windows command-line rules through `mslex` on Windows and with
POSIX shell rules through `shlex` elsewhere.
"""

from __future__ import annotations

import platform
import shlex
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import ModuleType


def _lex() -> ModuleType:
    if platform.system() == "Windows":
        import mslex

        return mslex
    return shlex


def split_arguments(arguments: str) -> list[str]:
    """Split a configured argument string into argv entries."""
    return _lex().split(arguments)


def join_arguments(args: Sequence[str]) -> str:
    """Render argv as a single command line, quoted for the running platform."""
    return _lex().join(list(args))


def format_command(executable: str, args: Sequence[str]) -> str:
    """Render an executable and its arguments for log output."""
    return join_arguments([executable, *args])


__all__ = ["format_command", "join_arguments", "split_arguments"]
