import os

import pytest

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_JSON", "false")

from airavat.core.metrics import MetricsCollector
from airavat.infrastructure.rate_limiting import MemoryRateLimitStore


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def memory_store(clock):
    return MemoryRateLimitStore(clock=clock)


@pytest.fixture
def app(clock):
    """Application wired to an in-memory counter store and the fake clock."""
    from airavat.core.application import create_application

    return create_application(rate_limit_store=MemoryRateLimitStore(clock=clock), clock=clock)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
