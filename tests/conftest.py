"""Shared fixtures for the SafeRoute test suite.

Provides a Flask test client, a fake clock for cache tests, and helpers
for building httpx clients backed by MockTransport.
"""

import os

import httpx
import pytest

# Ensure API keys are present before app is imported (startup checks read them)
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")
os.environ.pop("SENTRY_DSN", None)
os.environ["RATE_LIMIT_ROUTES"] = "5/minute"

from app import app, limiter, LOOKUP_CACHE  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    LOOKUP_CACHE.clear()
    limiter.reset()
    with app.test_client() as c:
        yield c


def mock_http(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler(request)``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
