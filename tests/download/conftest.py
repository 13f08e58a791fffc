"""
Pytest fixtures for download service tests.
"""

import random

import pytest

from xetclient.services.download import (
    ChunkFetcher,
    ReassemblyWriter,
    RetryPolicy,
    TransferOrchestrator,
)


@pytest.fixture
def writer() -> ReassemblyWriter:
    """Provide writer with the default hash algorithm."""
    return ReassemblyWriter()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Provide fast retry policy."""
    return RetryPolicy(max_attempts=3, initial_backoff=0.01, max_backoff=0.05, jitter=0.5)


@pytest.fixture
def make_orchestrator(clock, retry_policy):
    """Provide factory for orchestrators over an httpx client."""

    def factory(http, **kwargs) -> TransferOrchestrator:
        kwargs.setdefault("chunk_size", 16)
        kwargs.setdefault("capacity", 4)
        kwargs.setdefault("retry_policy", retry_policy)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", random.Random(7))
        fetcher = ChunkFetcher(http, now=kwargs["clock"].now)
        return TransferOrchestrator(fetcher, ReassemblyWriter(), **kwargs)

    return factory
