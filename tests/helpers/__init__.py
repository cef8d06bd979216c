"""Test helpers package."""

from tests.helpers.streams import (
    FakeStreamWriter,
    ScriptedStreamReader,
    feed_reader,
    hanging_opener,
    static_opener,
)
from tests.helpers.wait import ci_timeout, wait_until

__all__ = [
    "FakeStreamWriter",
    "ScriptedStreamReader",
    "ci_timeout",
    "feed_reader",
    "hanging_opener",
    "static_opener",
    "wait_until",
]
