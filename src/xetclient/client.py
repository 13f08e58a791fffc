"""
xetclient client.

Single entry point over the resolver, the credential provider, the tree
API, and the transfer orchestrator.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from xetclient._sync import create_sync_client
from xetclient._version import __version__
from xetclient.api import CasAuthProvider, ReferenceResolver, ResolvedFile, TreeLister
from xetclient.api._http import build_async_client
from xetclient.config import SDKSettings, get_settings
from xetclient.exceptions import InvalidInputError, ResolutionError
from xetclient.logging import get_logger
from xetclient.models import (
    AccessCredential,
    AtomicityMode,
    ContentDescriptor,
    Direction,
    FileDownloadRequest,
    FileMetadata,
    RepoInfo,
    TransferRequest,
    TransferResult,
)
from xetclient.services.download import DownloadMetrics, ReassemblyWriter, TransferOrchestrator

if TYPE_CHECKING:
    from xetclient.services.download import Clock, FetchPool
    from xetclient.services.download._transfer import ProgressCallback

logger = get_logger(__name__)


class AsyncXetClient:
    """
    Async client for content-addressed downloads from a Hugging Face style hub.

    The identity (hub token) given here is attached to every hub request
    unless a call passes its own ``identity``; pass ``identity=""`` for an
    anonymous request. Nothing is cached between calls: every ``resolve``
    and ``authorize`` goes to the network.

    Used as an async context manager the client keeps one HTTP connection
    pool open; otherwise each call opens and closes its own.

    Example:
        >>> async with AsyncXetClient(token="hf_xxx") as client:
        ...     d = await client.resolve("Qwen/Qwen3-0.6B", "model.safetensors")
        ...     cred = await client.authorize("Qwen/Qwen3-0.6B")
        ...     paths = await client.download([d], "./out", cred)
    """

    def __init__(
        self,
        token: str | None = None,
        endpoint: str | None = None,
        settings: SDKSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        pool: FetchPool | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            token: Hub token (defaults to settings, i.e. XET_TOKEN / HF_TOKEN).
            endpoint: Hub endpoint (defaults to settings).
            settings: Explicit settings instead of the process-wide ones.
            transport: Custom httpx transport (httpx.MockTransport in tests).
            pool: Fetch pool shared by every download of this client.
            clock: Time source for expiry checks and backoff.
        """
        self._settings = settings or get_settings()
        self._token = token if token is not None else self._settings.token
        self._endpoint = (endpoint or self._settings.endpoint).rstrip("/")
        self._transport = transport
        self._pool = pool
        self._clock = clock
        self._http: httpx.AsyncClient | None = None
        self._last_metrics: DownloadMetrics | None = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def settings(self) -> SDKSettings:
        return self._settings

    @property
    def version(self) -> str:
        """Library version."""
        return __version__

    @property
    def last_metrics(self) -> DownloadMetrics | None:
        """Metrics of the most recent download on this client."""
        return self._last_metrics

    def _identity(self, identity: str | None) -> str | None:
        return identity if identity is not None else self._token

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with build_async_client(self._settings, self._transport) as http:
            yield http

    async def __aenter__(self) -> AsyncXetClient:
        if self._http is None:
            self._http = build_async_client(self._settings, self._transport)
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # =========================================================================
    # Resolution and credentials
    # =========================================================================

    async def resolve(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> ContentDescriptor | None:
        """
        Resolve a repository file to its content descriptor.

        Returns:
            ContentDescriptor, or None when the file is not CAS-backed.

        Raises:
            ResolutionError: Metadata request failed or was malformed.
        """
        async with self._session() as http:
            resolver = ReferenceResolver(http, self._endpoint)
            return await resolver.resolve(repo, path, revision, self._identity(identity))

    async def resolve_metadata(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> ResolvedFile:
        """Raw hub metadata for a file (size, commit, etag, refresh route)."""
        async with self._session() as http:
            resolver = ReferenceResolver(http, self._endpoint)
            return await resolver.resolve_metadata(repo, path, revision, self._identity(identity))

    async def authorize(
        self,
        repo: str,
        revision: str = "main",
        direction: Direction = Direction.DOWNLOAD,
        identity: str | None = None,
        route: str | None = None,
    ) -> AccessCredential:
        """
        Obtain a fresh CAS credential.

        Raises:
            AuthError: Identity missing or invalid, or scope rejected.
        """
        async with self._session() as http:
            provider = CasAuthProvider(http, self._endpoint)
            return await provider.authorize(
                repo, revision, direction, self._identity(identity), route=route
            )

    # =========================================================================
    # Transfer
    # =========================================================================

    async def download(
        self,
        descriptors: Sequence[ContentDescriptor],
        destination_dir: str | Path,
        credential: AccessCredential,
        filenames: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> list[str]:
        """
        Download descriptors into ``destination_dir``.

        Either every file is materialized and verified, or none is.

        Returns:
            Local paths, index-aligned with ``descriptors``.

        Raises:
            InvalidInputError: Empty ``descriptors`` or bad ``filenames``.
            TransferError: With the failing ``descriptor_index`` and ``kind``.
        """
        result = await self.download_result(
            descriptors,
            destination_dir,
            credential,
            filenames=filenames,
            mode=AtomicityMode.ALL_OR_NOTHING,
            on_progress=on_progress,
            timeout=timeout,
        )
        return result.as_strings()

    async def download_result(
        self,
        descriptors: Sequence[ContentDescriptor],
        destination_dir: str | Path,
        credential: AccessCredential,
        filenames: Sequence[str] | None = None,
        mode: AtomicityMode = AtomicityMode.PARTIAL,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> TransferResult:
        """
        Download descriptors and return the full per-index result.

        In PARTIAL mode (the default here) failures are reported in
        ``result.errors`` instead of raised.
        """
        request = _transfer_request(descriptors, destination_dir, credential, filenames)
        async with self._session() as http:
            return await self._transfer(http, request, mode, on_progress, timeout)

    async def _transfer(
        self,
        http: httpx.AsyncClient,
        request: TransferRequest,
        mode: AtomicityMode,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
        resolve_time: float = 0.0,
    ) -> TransferResult:
        ReassemblyWriter.sweep(request.destination_dir, self._settings.staging_max_age)
        orchestrator = TransferOrchestrator.from_settings(
            http, self._settings, pool=self._pool, clock=self._clock
        )
        result = await orchestrator.download(
            request, mode=mode, timeout=timeout, on_progress=on_progress
        )
        self._last_metrics = DownloadMetrics.from_result(result, resolve_time=resolve_time)
        return result

    async def download_file(
        self,
        repo: str,
        path: str,
        destination: str | Path,
        revision: str = "main",
        on_progress: ProgressCallback | None = None,
        identity: str | None = None,
    ) -> str:
        """
        Resolve, authorize, and download one repository file to ``destination``.

        Raises:
            InvalidInputError: Empty destination.
            ResolutionError: The file is not CAS-backed.
            AuthError: No credential could be obtained.
            TransferError: The download failed.
        """
        destination = Path(destination)
        if not destination.name:
            raise InvalidInputError("Destination cannot be empty")
        identity = self._identity(identity)

        started = time.monotonic()
        async with self._session() as http:
            resolver = ReferenceResolver(http, self._endpoint)
            resolved = await resolver.resolve_metadata(repo, path, revision, identity)
            descriptor = await resolver.descriptor_for(resolved, repo, path, identity)
            if descriptor is None:
                raise ResolutionError("File is not stored in CAS", repo=repo, path=path)

            provider = CasAuthProvider(http, self._endpoint)
            credential = await provider.authorize(
                repo, revision, Direction.DOWNLOAD, identity, route=resolved.refresh_route
            )
            request = _transfer_request(
                [descriptor], destination.parent, credential, [destination.name]
            )
            result = await self._transfer(
                http,
                request,
                AtomicityMode.ALL_OR_NOTHING,
                on_progress,
                resolve_time=time.monotonic() - started,
            )
        return result.as_strings()[0]

    async def download_files_batch(self, requests: Sequence[FileDownloadRequest]) -> list[str]:
        """
        Download several repository files one after another.

        Stops at the first failure; files finished before it stay on disk.

        Returns:
            Destination paths of the downloaded files, in request order.
        """
        paths: list[str] = []
        for request in requests:
            try:
                paths.append(
                    await self.download_file(
                        request.repo, request.path, request.destination, request.revision
                    )
                )
            except Exception:
                logger.error(
                    f"Batch stopped at {request.repo}/{request.path} after {len(paths)} file(s)"
                )
                raise
        return paths

    # =========================================================================
    # Repository info
    # =========================================================================

    def get_repo_info(self, repo: str) -> RepoInfo:
        """Parse a repository identifier (``owner/name`` or ``datasets/owner/name``)."""
        return RepoInfo.parse(repo)

    async def list_files_with_metadata(
        self,
        repo: str,
        path: str = "",
        revision: str = "main",
        recursive: bool = False,
        identity: str | None = None,
    ) -> list[FileMetadata]:
        """List entries (files and directories) under ``path``."""
        async with self._session() as http:
            lister = TreeLister(http, self._endpoint)
            return await lister.list_entries(
                repo, path, revision, self._identity(identity), recursive=recursive
            )

    async def list_files(
        self,
        repo: str,
        path: str = "",
        revision: str = "main",
        recursive: bool = False,
        identity: str | None = None,
    ) -> list[str]:
        """List file paths (directories excluded) under ``path``."""
        entries = await self.list_files_with_metadata(repo, path, revision, recursive, identity)
        return [entry.path for entry in entries if entry.is_file]

    async def get_file_content(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> bytes:
        """
        Fetch a small repository file's bytes directly, bypassing CAS.

        Raises:
            InvalidInputError: Empty repo or path.
            ResolutionError: The hub did not return the file.
        """
        async with self._session() as http:
            resolver = ReferenceResolver(http, self._endpoint)
            return await resolver.read_content(repo, path, revision, self._identity(identity))

    def __repr__(self) -> str:
        return f"<AsyncXetClient endpoint={self._endpoint!r}>"


def _transfer_request(
    descriptors: Sequence[ContentDescriptor],
    destination_dir: str | Path,
    credential: AccessCredential,
    filenames: Sequence[str] | None,
) -> TransferRequest:
    try:
        return TransferRequest(
            descriptors=list(descriptors),
            destination_dir=Path(destination_dir),
            credential=credential,
            filenames=list(filenames) if filenames is not None else None,
        )
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first["loc"])
        prefix = f"{where}: " if where else ""
        raise InvalidInputError(
            f"Invalid download request: {prefix}{first['msg']}", cause=e
        ) from e


XetClient = create_sync_client(AsyncXetClient)


__all__ = ["AsyncXetClient", "XetClient"]
