"""Configuration loader for hostlink."""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from hostlink.constants import (
    DEFAULT_PIPE_ARGUMENTS,
    DEFAULT_SERVER_ARGUMENTS,
    DEFAULT_SUBPROCESS_CONNECT_TIMEOUT_MS,
    INFINITE_TIMEOUT_MS,
    PWSH_EXECUTABLE,
    STDERR_TAIL_LINES,
    STREAM_LIMIT_BYTES,
)
from hostlink.paths import get_config_path


class Settings(BaseModel):
    """Transport defaults, overridable from ``config.toml``."""

    connect_timeout_ms: int = Field(
        default=INFINITE_TIMEOUT_MS,
        description="Named pipe connect timeout in milliseconds (-1 waits indefinitely)",
    )
    subprocess_connect_timeout_ms: int = Field(
        default=DEFAULT_SUBPROCESS_CONNECT_TIMEOUT_MS,
        description="Connect timeout used when attaching to a freshly spawned process",
    )
    executable_name: str = Field(
        default=PWSH_EXECUTABLE,
        description="Executable to locate on PATH when spawning a peer host",
    )
    executable_path: str | None = Field(
        default=None,
        description="Explicit peer executable; skips PATH lookup when set",
    )
    server_arguments: str = Field(
        default=DEFAULT_SERVER_ARGUMENTS,
        description="Arguments selecting the peer's stdio server mode",
    )
    pipe_arguments: str = Field(
        default=DEFAULT_PIPE_ARGUMENTS,
        description="Arguments for a spawned peer that is reached through its named pipe",
    )
    encoding: str = Field(default="utf-8", description="Text encoding of protocol lines")
    stream_limit_bytes: int = Field(
        default=STREAM_LIMIT_BYTES,
        description="Maximum size of a single line, including its terminator",
    )
    stderr_tail_lines: int = Field(
        default=STDERR_TAIL_LINES,
        description="Number of child stderr lines kept for diagnostics",
    )

    @field_validator("connect_timeout_ms", "subprocess_connect_timeout_ms")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        if value < INFINITE_TIMEOUT_MS:
            msg = f"timeout must be >= {INFINITE_TIMEOUT_MS} (got {value})"
            raise ValueError(msg)
        return value

    @field_validator("stream_limit_bytes", "stderr_tail_lines")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            msg = f"value must be positive (got {value})"
            raise ValueError(msg)
        return value

    @classmethod
    def load(cls, config_path: Path | None = None) -> Settings:
        """Load settings from TOML file or use defaults.

        Keys may live at the top level or under a ``[transport]`` table.
        """
        if config_path is None:
            config_path = get_config_path()

        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            section = data.get("transport", data)
            return cls.model_validate(section)

        return cls()


__all__ = ["Settings"]
