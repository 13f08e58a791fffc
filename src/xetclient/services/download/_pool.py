"""
Bounded fetch pool.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class FetchPool:
    """
    Caps concurrent chunk fetches.

    Owned by one orchestrator call, or by a client that passes the same pool
    to every call so the cap holds across concurrent downloads. Bound to the
    event loop it is first used on.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._active = 0
        self._peak = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        """Highest number of simultaneously held slots."""
        return self._peak

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._active += 1
            self._peak = max(self._peak, self._active)
            try:
                yield
            finally:
                self._active -= 1

    def __repr__(self) -> str:
        return f"FetchPool(capacity={self.capacity}, active={self._active})"
