"""
Pytest configuration and fixtures for Tailwatch tests.
"""

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from tailwatch.config import Config, RetryBackoffConfig
from tailwatch.core import Notifier


@pytest.fixture
def tmp_path(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for tests.

    This is a built-in pytest fixture that we're re-exposing.
    """
    return tmp_path


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it holds or a timeout passes."""
    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Build a fast-polling Config that audits into tmp_path."""
    def _make(**overrides: Any) -> Config:
        values: dict[str, Any] = {
            "sources": [str(tmp_path / "a.log")],
            "patterns": ["error", "denied"],
            "poll_interval": 0.05,
            "retry_interval": 0.1,
            "throttle_window": 60,
            "shutdown_timeout": 5,
            "use_file_events": False,
            "audit_file": str(tmp_path / "audit" / "audit.log"),
            "retry_backoff": RetryBackoffConfig(initial=0, max=0, max_attempts=2),
        }
        values.update(overrides)
        return Config(**values)
    return _make


class RecordingNotifier(Notifier):
    """Notifier that records calls and replays scripted results."""

    def __init__(self, results: list[Any] | None = None) -> None:
        super().__init__({})
        self.results = list(results or [])
        self.calls: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> bool:
        self.calls.append((title, body))
        result = self.results.pop(0) if self.results else True
        if isinstance(result, Exception):
            raise result
        return bool(result)


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    """A notifier that always succeeds and records its calls."""
    return RecordingNotifier()
