from datetime import datetime, timedelta

import pytest

from waitline.store import QueueStore


class FakeClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 17, 11, 30, 0))


@pytest.fixture
def store(clock):
    return QueueStore(clock=clock)


@pytest.fixture
def events(store):
    received = []
    store.add_listener(received.append)
    return received
