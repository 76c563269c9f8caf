"""
Shared pytest fixtures for throttled tests.

This module provides:
- A controllable clock so window and cooldown tests never sleep
- An in-memory counter store and registry wired to that clock
- A Throttler with fast fetch settings
- Default registry / cached settings cleanup for test isolation

Usage:
    def test_something(registry, throttler, memory_fetcher):
        registry.register("Foo", threshold={"limit": 5, "period": 10})
        ...
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from throttled.core.settings import ThrottleSettings, get_settings
from throttled.core.store import InMemoryCounterStore
from throttled.execution.exclusion import ExclusionSet
from throttled.execution.fetch import ThrottledFetch
from throttled.execution.fetchers.memory import MemoryFetcher
from throttled.execution.registry import StrategyRegistry, set_default_registry
from throttled.execution.throttler import Throttler


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_globals(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Keep the default registry and cached settings per-test."""
    monkeypatch.chdir(tmp_path)  # no stray .env
    for name in ("THROTTLED_QUEUE_COOLDOWN", "THROTTLED_REDIS_URL", "THROTTLED_KEY_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    set_default_registry(None)
    yield
    set_default_registry(None)
    get_settings.cache_clear()


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Manually advanced clock; call it to read the time."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Throttling fixtures
# =============================================================================


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def registry(store: InMemoryCounterStore, clock: FakeClock) -> StrategyRegistry:
    return StrategyRegistry(store, clock=clock)


@pytest.fixture
def settings() -> ThrottleSettings:
    return ThrottleSettings(_env_file=None, queue_cooldown=1.0, fetch_timeout=0.01)


@pytest.fixture
def throttler(registry: StrategyRegistry, settings: ThrottleSettings) -> Throttler:
    return Throttler(registry, settings=settings)


@pytest.fixture
def memory_fetcher() -> MemoryFetcher:
    return MemoryFetcher(["default"], timeout=0.01)


@pytest.fixture
def exclusions(clock: FakeClock) -> ExclusionSet:
    return ExclusionSet(cooldown=1.0, clock=clock)


@pytest.fixture
def fetch(memory_fetcher: MemoryFetcher, throttler: Throttler, exclusions: ExclusionSet) -> ThrottledFetch:
    return ThrottledFetch(memory_fetcher, throttler, exclusions=exclusions)
