"""
Pytest configuration and fixtures for xetclient tests.
"""

import pytest

from fakes import HUB, FakeClock, FakeHub
from xetclient.config import SDKSettings, reset_settings


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep host environment out of settings."""
    for name in ("XET_TOKEN", "HF_TOKEN", "XET_ENDPOINT", "XET_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def hub() -> FakeHub:
    """Provide in-memory hub and CAS server."""
    return FakeHub()


@pytest.fixture
def clock() -> FakeClock:
    """Provide clock with instant sleeps."""
    return FakeClock()


@pytest.fixture
def settings() -> SDKSettings:
    """Provide settings pointed at the fake hub with small chunks."""
    return SDKSettings(
        endpoint=HUB,
        chunk_size=64 * 1024,
        max_concurrent_fetches=4,
        initial_backoff=0.01,
        max_backoff=0.1,
    )
