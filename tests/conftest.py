from datetime import timedelta

import pytest

from kvqueue.adapters.store.memory import InMemoryStore
from kvqueue.domain.models import LeaseConfig


class FakeClock:
    """Manually advanced time source for InMemoryStore."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def config() -> LeaseConfig:
    # Fast renewal; sweeps only when a test asks for one.
    return LeaseConfig(
        heartbeat_interval=timedelta(milliseconds=10),
        scan_interval=timedelta(hours=1),
    )
