"""
Reference resolution: (repo, path, revision) -> ContentDescriptor.

The hub answers a HEAD on a file's resolve URL with pointer headers
(X-Xet-Hash, X-Linked-Size) instead of the file body. Repositories that
predate those headers store a small pointer file in place of the content,
which is parsed as a fallback.
"""

from __future__ import annotations

import json
from pathlib import PurePosixPath

import httpx
from pydantic import BaseModel

from xetclient.api._http import bearer, header_value, rewrite_route
from xetclient.exceptions import InvalidInputError, ResolutionError
from xetclient.logging import get_logger
from xetclient.models import ContentDescriptor, RepoInfo

logger = get_logger(__name__)

HEADER_XET_HASH = "x-xet-hash"
HEADER_XET_REFRESH_ROUTE = "x-xet-refresh-route"
HEADER_REPO_COMMIT = "x-repo-commit"
HEADER_LINKED_SIZE = "x-linked-size"
HEADER_LINKED_ETAG = "x-linked-etag"

# Pointer files are tiny; anything larger is real content.
POINTER_MAX_BYTES = 1024

# Never worth reading as text.
BINARY_EXTENSIONS = frozenset(
    {
        "safetensors", "bin", "pt", "pth", "ckpt", "onnx", "tflite", "h5",
        "npy", "npz", "tar", "gz", "zip", "xz", "zst", "bz2", "gguf", "parquet",
    }
)


class ResolvedFile(BaseModel):
    """Everything the hub says about one file."""

    url: str
    size: int
    commit_hash: str | None = None
    etag: str | None = None
    descriptor: ContentDescriptor | None = None
    refresh_route: str | None = None


def should_try_pointer(path: str) -> bool:
    """False for extensions that are always binary payloads."""
    return PurePosixPath(path).suffix.lower().lstrip(".") not in BINARY_EXTENSIONS


def parse_pointer(text: str) -> ContentDescriptor | None:
    """
    Parse a pointer file body.

    Accepts the JSON form ``{"hash": ..., "file_size": ...}`` and the git-lfs
    form (``oid sha256:<hex>`` / ``size <n>`` lines). Returns None when the
    body is neither.

    Raises:
        ResolutionError: The body looks like a pointer but its fields are invalid.
    """
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or "hash" not in data:
            return None
        size = data.get("file_size", data.get("size"))
        try:
            return ContentDescriptor(hash=str(data["hash"]), size=int(size))
        except (TypeError, ValueError) as e:
            raise ResolutionError(f"Malformed pointer: {e}", cause=e) from e

    oid = size = None
    for line in stripped.splitlines():
        if line.startswith("oid "):
            oid = line[4:].strip()
        elif line.startswith("size "):
            size = line[5:].strip()
    if not oid or size is None:
        if stripped.startswith("version https://git-lfs"):
            raise ResolutionError("Malformed LFS pointer: missing oid or size")
        return None
    try:
        return ContentDescriptor(hash=oid, size=int(size))
    except ValueError as e:
        raise ResolutionError(f"Malformed LFS pointer: {e}", cause=e) from e


def parse_size(headers: httpx.Headers) -> int | None:
    """File size from X-Linked-Size, Content-Range total, or Content-Length."""
    linked = header_value(headers, HEADER_LINKED_SIZE)
    if linked and linked.isdigit():
        return int(linked)
    content_range = header_value(headers, "content-range")
    if content_range and "/" in content_range:
        total = content_range.rsplit("/", 1)[1]
        if total.isdigit():
            return int(total)
    length = header_value(headers, "content-length")
    if length and length.isdigit():
        return int(length)
    return None


def extract_refresh_route(headers: httpx.Headers, endpoint: str) -> str | None:
    """Credential route from ``Link: <...>; rel="xet-auth"`` or X-Xet-Refresh-Route."""
    link = headers.get("link")
    if link:
        for fragment in link.split(","):
            if 'rel="xet-auth"' in fragment.lower():
                start, end = fragment.find("<"), fragment.find(">")
                if 0 <= start < end:
                    return rewrite_route(fragment[start + 1 : end].strip(), endpoint)
    route = header_value(headers, HEADER_XET_REFRESH_ROUTE)
    return rewrite_route(route, endpoint) if route else None


class ReferenceResolver:
    """
    Resolves repository file references to content descriptors.

    Example:
        >>> resolver = ReferenceResolver(http, "https://huggingface.co")
        >>> d = await resolver.resolve("Qwen/Qwen3-0.6B", "tokenizer.json", "main")
        >>> d.size
        11422654
    """

    def __init__(self, http: httpx.AsyncClient, endpoint: str) -> None:
        self._http = http
        self._endpoint = endpoint.rstrip("/")

    async def resolve(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> ContentDescriptor | None:
        """
        Resolve a file reference.

        Returns:
            The descriptor, or None if the file exists but is not CAS-backed.

        Raises:
            InvalidInputError: Bad repo identifier or empty path.
            ResolutionError: Network failure, non-success status, or malformed metadata.
        """
        resolved = await self.resolve_metadata(repo, path, revision, identity)
        return await self.descriptor_for(resolved, repo, path, identity)

    async def descriptor_for(
        self,
        resolved: ResolvedFile,
        repo: str,
        path: str,
        identity: str | None = None,
    ) -> ContentDescriptor | None:
        """Descriptor from already-fetched metadata, reading a pointer body if needed."""
        if resolved.descriptor is not None:
            return resolved.descriptor

        if not should_try_pointer(path) or resolved.size > POINTER_MAX_BYTES:
            logger.debug(f"{repo}/{path}: no CAS metadata")
            return None

        body = await self._read_pointer(resolved.url, repo, path, identity)
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return None

        try:
            return parse_pointer(text)
        except ResolutionError as e:
            raise ResolutionError(e.message, repo=repo, path=path, cause=e) from e

    async def resolve_metadata(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> ResolvedFile:
        """HEAD the resolve URL (without following redirects) and parse its headers."""
        if not path:
            raise InvalidInputError("Path cannot be empty")
        info = RepoInfo.parse(repo)
        url = info.resolve_url(self._endpoint, path, revision)

        try:
            response = await self._http.head(
                url, headers=bearer(identity), follow_redirects=False
            )
        except httpx.HTTPError as e:
            raise ResolutionError(f"Request failed: {e}", repo=repo, path=path, cause=e) from e

        if not (response.is_success or response.is_redirect):
            raise ResolutionError(
                f"Metadata request returned HTTP {response.status_code}",
                repo=repo,
                path=path,
            )

        headers = response.headers
        size = parse_size(headers)
        if size is None:
            raise ResolutionError("Missing file size headers", repo=repo, path=path)

        descriptor = None
        xet_hash = header_value(headers, HEADER_XET_HASH)
        if xet_hash:
            descriptor = ContentDescriptor(hash=xet_hash, size=size)

        return ResolvedFile(
            url=url,
            size=size,
            commit_hash=header_value(headers, HEADER_REPO_COMMIT),
            etag=header_value(headers, HEADER_LINKED_ETAG) or header_value(headers, "etag"),
            descriptor=descriptor,
            refresh_route=extract_refresh_route(headers, self._endpoint),
        )

    async def read_content(
        self,
        repo: str,
        path: str,
        revision: str = "main",
        identity: str | None = None,
    ) -> bytes:
        """
        Fetch a file's raw bytes from the resolve URL.

        Meant for small files (configs, tokenizers); the body is held in memory.

        Raises:
            InvalidInputError: Bad repo identifier or empty path.
            ResolutionError: Network failure or non-success status.
        """
        info = RepoInfo.parse(repo)
        if not path:
            raise InvalidInputError("Path cannot be empty")
        url = info.resolve_url(self._endpoint, path, revision)
        return await self._get_body(url, repo, path, identity, "Content")

    async def _read_pointer(
        self, url: str, repo: str, path: str, identity: str | None
    ) -> bytes:
        return await self._get_body(url, repo, path, identity, "Pointer")

    async def _get_body(
        self, url: str, repo: str, path: str, identity: str | None, what: str
    ) -> bytes:
        try:
            response = await self._http.get(url, headers=bearer(identity))
        except httpx.HTTPError as e:
            raise ResolutionError(f"Request failed: {e}", repo=repo, path=path, cause=e) from e
        if not response.is_success:
            raise ResolutionError(
                f"{what} request returned HTTP {response.status_code}",
                repo=repo,
                path=path,
            )
        return response.content


__all__ = [
    "ReferenceResolver",
    "ResolvedFile",
    "parse_pointer",
    "parse_size",
    "extract_refresh_route",
    "should_try_pointer",
]
