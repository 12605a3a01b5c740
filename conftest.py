"""Root conftest.py for the de1sim monorepo.

This provides shared pytest configuration and fixtures across all packages,
including a virtual-clock scheduler for timer-driven simulator tests.
"""

from __future__ import annotations

import heapq
import itertools
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config


# Add all package src directories to path for imports
PROJECT_ROOT = Path(__file__).parent
for pkg_dir in PROJECT_ROOT.glob("de1sim-*/src"):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line(
        "markers",
        "integration: Integration test requiring a running peripheral daemon",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


class FakeTimer:
    """Handle returned by :meth:`FakeScheduler.call_later`."""

    def __init__(self, when: float, callback: Callable[[], object]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Deterministic virtual clock with the ``time``/``call_later`` interface.

    Timers due at the same instant fire in the order they were scheduled.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: list[tuple[float, int, FakeTimer]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], object]) -> FakeTimer:
        timer = FakeTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        """Return the number of live (not cancelled) timers."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, when)
            timer.callback()
        self._now = target

    def run_until_idle(self, limit: float = 3600.0) -> None:
        """Fire timers until none remain or *limit* seconds have passed."""
        deadline = self._now + limit
        while self._queue and self._now <= deadline:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, when)
            timer.callback()


@pytest.fixture
def scheduler() -> FakeScheduler:
    """Provide a fresh virtual-clock scheduler."""
    return FakeScheduler()
