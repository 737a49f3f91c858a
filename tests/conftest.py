"""Shared test fixtures."""

import time

import pytest

from config import Settings
from analytics.engine import MetricsEngine
from storage import InMemoryMetricsStorage


class ManualClock:
    """Deterministic stand-in for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def _wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds; background aggregation runs on its own thread."""
    return _wait_for


@pytest.fixture
def settings():
    """Test settings: a timer long enough that only explicit or overflow passes run."""
    return Settings(
        redis_url="redis://localhost:6379/1",
        aggregation_interval_sec=3600,
        cleanup_interval_sec=3600,
        storage_backoff_base_sec=0.0,
        log_level="WARNING",
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def storage():
    return InMemoryMetricsStorage()


@pytest.fixture
def engine(settings, storage, clock):
    eng = MetricsEngine(settings, storage, clock=clock).start()
    yield eng
    eng.shutdown()
