"""
Global pytest fixtures for the linkindex test suite.

Responsibilities:
    - Provide isolated in-memory backends, record stores and analytics sinks
    - Provide a LinkResolver driven by a controllable clock
    - Provide a fresh FastAPI TestClient via the app factory for integration tests

Why an app factory?
    Using `create_app()` ensures each test gets fresh in-memory state,
    eliminating cross-test flakiness.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from main import create_app
from linkindex.analytics.analytics import Analytics
from linkindex.index.records import LinkRecordStore
from linkindex.manager.link_resolver import LinkResolver
from linkindex.storage.storage import Storage

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def storage() -> Storage:
    """Fresh in-memory key-value backend."""
    return Storage()


@pytest.fixture
def store(storage: Storage) -> LinkRecordStore:
    return LinkRecordStore(storage)


@pytest.fixture
def analytics() -> Analytics:
    return Analytics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(store: LinkRecordStore, analytics: Analytics, clock: FakeClock) -> LinkResolver:
    """
    LinkResolver wired to the storage fixture, with a 30 day window and a
    fake clock so window edges can be tested deterministically.
    """
    return LinkResolver(store, analytics=analytics, window=timedelta(days=30), precision=3, clock=clock)


@pytest.fixture
def client(resolver: LinkResolver) -> TestClient:
    """Fresh TestClient around an app sharing the resolver fixture."""
    return TestClient(create_app(resolver=resolver))
