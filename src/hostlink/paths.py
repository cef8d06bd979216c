"""Path helpers for hostlink configuration and pipe endpoints."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from platformdirs import user_config_dir


def get_config_dir() -> Path:
    """Get the config directory for hostlink (config.toml)."""
    override = os.environ.get("HOSTLINK_CONFIG_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_config_dir("hostlink"))


def get_config_path() -> Path:
    """Get the path to the main config file."""
    return get_config_dir() / "config.toml"


def get_pipe_socket_dir() -> Path:
    """Get the directory .NET peers use for named-pipe backed Unix sockets.

    .NET resolves this through ``Path.GetTempPath()``, which honours ``TMPDIR``
    the same way :func:`tempfile.gettempdir` does.
    """
    return Path(tempfile.gettempdir())


__all__ = ["get_config_dir", "get_config_path", "get_pipe_socket_dir"]
