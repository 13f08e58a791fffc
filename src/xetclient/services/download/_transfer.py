"""
Transfer orchestrator for the download service.

Drives concurrent chunk fetches for every descriptor of a request through
one scheduler loop, feeds the reassembly writer, and decides what reaches
the destination directory.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

from xetclient.exceptions import (
    ErrorKind,
    InvalidInputError,
    TransferError,
    TransientNetworkError,
    XetError,
)
from xetclient.logging import get_logger
from xetclient.models import (
    AtomicityMode,
    ContentDescriptor,
    TransferRequest,
    TransferResult,
    TransferStats,
    plan_chunks,
)
from xetclient.services.download._config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_CONCURRENT_FETCHES,
)
from xetclient.services.download._fetcher import ChunkFetcher
from xetclient.services.download._pool import FetchPool
from xetclient.services.download._retry import (
    ChunkState,
    ChunkTask,
    Clock,
    RetryPolicy,
    SystemClock,
)
from xetclient.services.download._writer import ReassemblyWriter, WriteHandle

if TYPE_CHECKING:
    import httpx

    from xetclient.config import SDKSettings

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


class FileState(str, Enum):
    ACTIVE = "active"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(eq=False)
class _FileTransfer:
    """One final path: the descriptor indices that map to it and its chunks."""

    indices: list[int]
    descriptor: ContentDescriptor
    filename: str
    tasks: list[ChunkTask] = field(default_factory=list)
    remaining: int = 0
    state: FileState = FileState.ACTIVE
    handle: WriteHandle | None = None
    error: TransferError | None = None

    @property
    def index(self) -> int:
        return self.indices[0]


class TransferOrchestrator:
    """
    Downloads content descriptors into a destination directory.

    Each descriptor is split into fixed-size ranges that share one bounded
    FetchPool. Transient failures are retried with backoff; any other failure
    fails the descriptor. In ALL_OR_NOTHING mode nothing is committed until
    every descriptor is verified; in PARTIAL mode each file is committed as
    soon as it verifies.

    Example:
        >>> orchestrator = TransferOrchestrator(fetcher, ReassemblyWriter())
        >>> result = await orchestrator.download(request)
        >>> result.as_strings()
        ['/tmp/out/config.json']
    """

    def __init__(
        self,
        fetcher: ChunkFetcher,
        writer: ReassemblyWriter,
        *,
        pool: FetchPool | None = None,
        capacity: int = DEFAULT_MAX_CONCURRENT_FETCHES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        attempt_timeout: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.fetcher = fetcher
        self.writer = writer
        self.pool = pool
        self.capacity = pool.capacity if pool is not None else capacity
        self.chunk_size = chunk_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or SystemClock()
        self.attempt_timeout = attempt_timeout
        self.rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        http: httpx.AsyncClient,
        settings: SDKSettings,
        *,
        pool: FetchPool | None = None,
        clock: Clock | None = None,
    ) -> TransferOrchestrator:
        clock = clock or SystemClock()
        return cls(
            ChunkFetcher(http, now=clock.now),
            ReassemblyWriter(settings.hash_algorithm),
            pool=pool,
            capacity=settings.max_concurrent_fetches,
            chunk_size=settings.chunk_size,
            retry_policy=RetryPolicy.from_settings(settings),
            clock=clock,
            attempt_timeout=settings.attempt_timeout,
        )

    async def download(
        self,
        request: TransferRequest,
        mode: AtomicityMode = AtomicityMode.ALL_OR_NOTHING,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """
        Download every descriptor of ``request``.

        Args:
            request: Descriptors, destination directory, and credential.
            mode: ALL_OR_NOTHING raises on the first failure and leaves no
                final files; PARTIAL reports failures per index.
            timeout: Optional limit for the whole request in seconds.
            on_progress: Callback(bytes_done, bytes_total).

        Returns:
            TransferResult index-aligned with ``request.descriptors``.

        Raises:
            TransferError: ALL_OR_NOTHING failure, or overall timeout.
            InvalidInputError: Two descriptors map to one path with different hashes.
        """
        pool = self.pool or FetchPool(self.capacity)
        run = _TransferRun(self, request, mode, pool, on_progress)
        if timeout is None:
            return await run.execute()
        try:
            return await asyncio.wait_for(run.execute(), timeout)
        except asyncio.TimeoutError as e:
            raise TransferError(
                ErrorKind.TRANSIENT, None, f"Transfer timed out after {timeout}s", cause=e
            ) from e


class _TransferRun:
    """State of one ``download`` call."""

    def __init__(
        self,
        orchestrator: TransferOrchestrator,
        request: TransferRequest,
        mode: AtomicityMode,
        pool: FetchPool,
        on_progress: ProgressCallback | None,
    ) -> None:
        self.o = orchestrator
        self.request = request
        self.mode = mode
        self.pool = pool
        self.on_progress = on_progress
        self.endpoint = request.credential.endpoint

        self.files = self._plan()
        self.queue: deque[ChunkTask] = deque(t for f in self.files for t in f.tasks)
        self.fetching: dict[asyncio.Task, ChunkTask] = {}
        self.timers: dict[asyncio.Task, ChunkTask] = {}
        self.verifying: dict[asyncio.Task, _FileTransfer] = {}
        self.cancelled: set[asyncio.Task] = set()

        self.errors: dict[int, TransferError] = {}
        self.first_error: TransferError | None = None
        self.aborted = False
        self.stats = TransferStats()
        self.bytes_total = sum(f.descriptor.size for f in self.files)
        self.bytes_done = 0

    def _plan(self) -> list[_FileTransfer]:
        by_name: dict[str, _FileTransfer] = {}
        for i, descriptor in enumerate(self.request.descriptors):
            name = self.request.filename_for(i)
            existing = by_name.get(name)
            if existing is not None:
                if existing.descriptor.digest != descriptor.digest or (
                    existing.descriptor.size != descriptor.size
                ):
                    raise InvalidInputError(
                        f"Descriptors {existing.index} and {i} map to '{name}' "
                        f"with different content"
                    )
                existing.indices.append(i)
                continue
            transfer = _FileTransfer(indices=[i], descriptor=descriptor, filename=name)
            transfer.tasks = [
                ChunkTask(chunk, owner=transfer)
                for chunk in plan_chunks(descriptor, self.o.chunk_size)
            ]
            transfer.remaining = len(transfer.tasks)
            by_name[name] = transfer
        return list(by_name.values())

    # =========================================================================
    # Run
    # =========================================================================

    async def execute(self) -> TransferResult:
        started = time.monotonic()
        logger.info(
            f"Downloading {len(self.files)} file(s), {self.bytes_total} bytes "
            f"in {len(self.queue)} chunks"
        )
        try:
            await self._loop()
            if self.mode is AtomicityMode.ALL_OR_NOTHING:
                if self.first_error is not None:
                    raise self.first_error
                self._commit_all()
            return self._result(time.monotonic() - started)
        finally:
            await self._shutdown()

    async def _loop(self) -> None:
        for transfer in self.files:
            if not transfer.tasks:
                self._start_verify(transfer)

        while not self.aborted:
            self._dispatch()
            waiting = [*self.fetching, *self.timers, *self.verifying]
            if not waiting:
                return
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task in self.fetching:
                    self._on_fetched(task)
                elif task in self.timers:
                    self._on_timer(task)
                elif task in self.verifying:
                    self._on_verified(task)
                if self.aborted:
                    break

    def _dispatch(self) -> None:
        while self.queue and not self.aborted and len(self.fetching) < self.pool.capacity:
            chunk = self.queue.popleft()
            transfer: _FileTransfer = chunk.owner
            if transfer.state is not FileState.ACTIVE or not self._ensure_open(transfer):
                continue
            chunk.start()
            logger.debug(
                f"Fetching {chunk.chunk.range_header} of descriptor {transfer.index} "
                f"(attempt {chunk.attempt})"
            )
            self.fetching[asyncio.create_task(self._fetch(chunk))] = chunk

    async def _fetch(self, chunk: ChunkTask) -> bytes:
        async with self.pool.slot():
            try:
                return await asyncio.wait_for(
                    self.o.fetcher.fetch(self.endpoint, chunk.chunk, self.request.credential),
                    self.o.attempt_timeout,
                )
            except asyncio.TimeoutError as e:
                raise TransientNetworkError(
                    f"Attempt {chunk.attempt} timed out for {chunk.chunk.range_header}",
                    cause=e,
                ) from e

    def _ensure_open(self, transfer: _FileTransfer) -> bool:
        if transfer.handle is not None:
            return True
        try:
            transfer.handle = self.o.writer.open(
                self.request.destination_dir, transfer.descriptor, transfer.filename
            )
        except OSError as e:
            self._fail(transfer, e)
            return False
        return True

    # =========================================================================
    # Completions
    # =========================================================================

    def _on_fetched(self, task: asyncio.Task) -> None:
        chunk = self.fetching.pop(task)
        transfer: _FileTransfer = chunk.owner
        if task.cancelled() or transfer.state is not FileState.ACTIVE:
            return

        error = task.exception()
        if error is None:
            data = task.result()
            try:
                self.o.writer.write(transfer.handle, chunk.chunk.offset, data)
            except (XetError, OSError) as e:
                error = e
            else:
                chunk.succeed()
                self._record_chunk(transfer, len(data))
                return

        if not isinstance(error, (XetError, OSError)):
            raise error
        if chunk.fail(error, self.o.retry_policy, self.o.rng) is ChunkState.RETRY_SCHEDULED:
            self.stats.retries_count += 1
            logger.warning(
                f"Retrying {chunk.chunk.range_header} of descriptor {transfer.index} "
                f"in {chunk.delay:.2f}s (attempt {chunk.attempt}): {error}"
            )
            self.timers[asyncio.create_task(self.o.clock.sleep(chunk.delay))] = chunk
        else:
            self._fail(transfer, error)

    def _record_chunk(self, transfer: _FileTransfer, size: int) -> None:
        self.stats.bytes_transferred += size
        self.stats.chunks_count += 1
        self.bytes_done += size
        if self.on_progress:
            self.on_progress(self.bytes_done, self.bytes_total)
        transfer.remaining -= 1
        if transfer.remaining == 0:
            self._start_verify(transfer)

    def _on_timer(self, task: asyncio.Task) -> None:
        chunk = self.timers.pop(task)
        if task.cancelled():
            return
        task.result()
        if chunk.owner.state is FileState.ACTIVE:
            chunk.ready()
            self.queue.append(chunk)

    def _start_verify(self, transfer: _FileTransfer) -> None:
        if not self._ensure_open(transfer):
            return
        transfer.state = FileState.VERIFYING
        self.verifying[asyncio.create_task(self.o.writer.verify(transfer.handle))] = transfer

    def _on_verified(self, task: asyncio.Task) -> None:
        transfer = self.verifying.pop(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            if not isinstance(error, (XetError, OSError)):
                raise error
            self._fail(transfer, error)
            return
        transfer.state = FileState.VERIFIED
        logger.debug(f"Verified descriptor {transfer.index} ({transfer.descriptor.hash})")
        if self.mode is AtomicityMode.PARTIAL:
            try:
                self.o.writer.commit(transfer.handle)
            except OSError as e:
                self._fail(transfer, e)
                return
            transfer.state = FileState.COMMITTED
            self.stats.files_count += 1

    def _fail(self, transfer: _FileTransfer, error: XetError | OSError) -> None:
        """Fail one file: cancel its chunks and drop its staging file."""
        if transfer.state is FileState.FAILED:
            return
        transfer.state = FileState.FAILED
        for pending in (self.fetching, self.timers):
            for task, chunk in list(pending.items()):
                if chunk.owner is transfer:
                    task.cancel()
                    del pending[task]
                    self.cancelled.add(task)
        if transfer.handle is not None:
            self.o.writer.abort(transfer.handle)

        for index in transfer.indices:
            self.errors[index] = TransferError.from_error(error, index)
        transfer.error = self.errors[transfer.index]
        logger.warning(f"Descriptor {transfer.index} failed: {transfer.error}")

        if self.first_error is None:
            self.first_error = transfer.error
        if self.mode is AtomicityMode.ALL_OR_NOTHING:
            self.aborted = True

    # =========================================================================
    # Finish
    # =========================================================================

    def _commit_all(self) -> None:
        committed: list[_FileTransfer] = []
        for transfer in self.files:
            try:
                self.o.writer.commit(transfer.handle)
            except OSError as e:
                for done in committed:
                    self.o.writer.revoke(done.handle)
                    done.state = FileState.FAILED
                raise TransferError.from_error(e, transfer.index) from e
            transfer.state = FileState.COMMITTED
            committed.append(transfer)
        self.stats.files_count = len(committed)

    def _result(self, elapsed: float) -> TransferResult:
        paths = [None] * len(self.request.descriptors)
        for transfer in self.files:
            if transfer.state is FileState.COMMITTED:
                for index in transfer.indices:
                    paths[index] = transfer.handle.final_path
        result = TransferResult(
            paths=paths, errors=self.errors, stats=self.stats, elapsed=elapsed
        )
        logger.info(
            f"Transfer finished: {len(result.succeeded)} ok, {len(result.failed)} failed, "
            f"{self.stats.bytes_transferred} bytes in {elapsed:.2f}s"
        )
        return result

    async def _shutdown(self) -> None:
        """Cancel outstanding work and remove every uncommitted staging file."""
        pending = [*self.fetching, *self.timers, *self.verifying, *self.cancelled]
        for task in pending:
            task.cancel()
        for transfer in self.files:
            if transfer.handle is not None and transfer.state is not FileState.COMMITTED:
                self.o.writer.abort(transfer.handle)
        self.fetching.clear()
        self.timers.clear()
        self.verifying.clear()
        self.cancelled.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["TransferOrchestrator", "FileState", "ProgressCallback"]
