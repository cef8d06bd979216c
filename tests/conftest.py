"""Pytest fixtures for hostlink tests."""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import Phase, Verbosity, settings

_TEST_BASE_DIR = Path(tempfile.mkdtemp(prefix="hostlink-tests-"))
os.environ["HOSTLINK_CONFIG_DIR"] = str(_TEST_BASE_DIR / "config")
os.environ.pop("HOSTLINK_INSTRUMENTATION", None)
os.environ.pop("HOSTLINK_INSTRUMENTATION_LOG", None)

from hostlink import instrumentation  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Generator


settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
settings.register_profile(
    "dev",
    max_examples=20,
    deadline=500,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip socket and child-process tests where Unix sockets are unavailable."""
    del config
    if sys.platform != "win32":
        return
    skip = pytest.mark.skip(reason="Unix domain socket tests do not run on Windows")
    for item in items:
        if item.get_closest_marker("integration"):
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def _clean_instrumentation() -> Generator[None, None, None]:
    """Keep transport metrics from leaking between tests."""
    instrumentation.configure(enabled=False, log_events=False)
    instrumentation.reset()
    yield
    instrumentation.configure(enabled=False, log_events=False)
    instrumentation.reset()


@pytest.fixture
def short_tmp() -> Generator[Path, None, None]:
    """Create a short temp directory for Unix socket paths (macOS 104-byte limit)."""
    d = tempfile.mkdtemp(prefix="h-", dir="/tmp")
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def _mock_platform_system(monkeypatch, request):
    """Handle @pytest.mark.mock_platform_system("Windows") marker."""
    marker = request.node.get_closest_marker("mock_platform_system")
    if marker:
        target_platform = marker.args[0]
        monkeypatch.setattr("platform.system", lambda: target_platform)
