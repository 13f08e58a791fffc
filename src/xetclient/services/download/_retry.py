"""
Per-chunk retry state machine, backoff policy, and clock.

Each chunk moves through:

    PENDING -> IN_FLIGHT -> SUCCEEDED
                         -> RETRY_SCHEDULED(attempt, delay) -> PENDING
                         -> FAILED(kind)

The orchestrator's scheduler loop drives the transitions; the policy only
decides whether a failure is retried and how long to wait.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from xetclient.exceptions import ErrorKind, TransientNetworkError, XetError
from xetclient.services.download._config import (
    DEFAULT_BACKOFF_JITTER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
)

if TYPE_CHECKING:
    from xetclient.config import SDKSettings
    from xetclient.models import ChunkHandle


class Clock(Protocol):
    """Time source for expiry checks and backoff sleeps."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock and asyncio.sleep."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with jittered exponential backoff."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    jitter: float = DEFAULT_BACKOFF_JITTER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    @classmethod
    def from_settings(cls, settings: SDKSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_backoff=settings.initial_backoff,
            max_backoff=settings.max_backoff,
            jitter=settings.backoff_jitter,
        )

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Only transient errors are retried, and only below the attempt ceiling."""
        return isinstance(error, TransientNetworkError) and attempt < self.max_attempts

    def delay(self, attempt: int, rng: random.Random) -> float:
        """Delay before attempt ``attempt + 1``; the upper ``jitter`` share is random."""
        base = min(self.max_backoff, self.initial_backoff * (2 ** (attempt - 1)))
        return base * (1.0 - self.jitter * rng.random())


class ChunkState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


class InvalidTransition(RuntimeError):
    pass


@dataclass(eq=False)
class ChunkTask:
    """One chunk's progress through the retry state machine."""

    chunk: ChunkHandle
    owner: Any = None
    state: ChunkState = ChunkState.PENDING
    attempt: int = 0
    delay: float = 0.0
    error: BaseException | None = field(default=None, repr=False)

    @property
    def failure_kind(self) -> ErrorKind | None:
        if self.state is ChunkState.FAILED and isinstance(self.error, XetError):
            return self.error.kind
        return None

    def _require(self, *states: ChunkState) -> None:
        if self.state not in states:
            raise InvalidTransition(
                f"chunk @{self.chunk.offset}: {self.state.value} not in "
                f"{[s.value for s in states]}"
            )

    def start(self) -> None:
        self._require(ChunkState.PENDING)
        self.state = ChunkState.IN_FLIGHT
        self.attempt += 1

    def succeed(self) -> None:
        self._require(ChunkState.IN_FLIGHT)
        self.state = ChunkState.SUCCEEDED
        self.error = None

    def fail(self, error: BaseException, policy: RetryPolicy, rng: random.Random) -> ChunkState:
        """Record a failed attempt and move to RETRY_SCHEDULED or FAILED."""
        self._require(ChunkState.IN_FLIGHT)
        self.error = error
        if policy.should_retry(error, self.attempt):
            self.delay = policy.delay(self.attempt, rng)
            self.state = ChunkState.RETRY_SCHEDULED
        else:
            self.state = ChunkState.FAILED
        return self.state

    def ready(self) -> None:
        """Backoff elapsed; eligible for dispatch again."""
        self._require(ChunkState.RETRY_SCHEDULED)
        self.state = ChunkState.PENDING
        self.delay = 0.0


__all__ = [
    "Clock",
    "SystemClock",
    "RetryPolicy",
    "ChunkState",
    "ChunkTask",
    "InvalidTransition",
]
