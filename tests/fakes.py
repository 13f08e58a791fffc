"""
In-memory test doubles.

FakeHub serves the hub API (resolve, token, tree) and the CAS read API from
memory through httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import hashlib
import random
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import unquote, urlsplit

import httpx

from xetclient.models import AccessCredential, ContentDescriptor, CredentialScope, Direction

HUB = "https://hub.test"
CAS = "https://cas.test"
CAS_TOKEN = "cas-token-123"
REPO = "acme/widgets"

_RESOLVE = re.compile(r"^/(?:(?:datasets|spaces)/)?([^/]+/[^/]+)/resolve/([^/]+)/(.+)$")
_TOKEN = re.compile(r"^/api/(?:models|datasets|spaces)/([^/]+/[^/]+)/xet-(read|write)-token/(.+)$")
_TREE = re.compile(r"^/api/(?:models|datasets|spaces)/([^/]+/[^/]+)/tree/([^/]+)/?(.*)$")
_CONTENT = re.compile(r"^/v1/content/(.+)$")
_RANGE = re.compile(r"^bytes=(\d+)-(\d+)$")


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def blob(size: int, seed: int = 0) -> bytes:
    """Deterministic pseudo-random bytes."""
    return random.Random(seed).randbytes(size)


class FakeClock:
    """Clock whose sleeps return immediately and are recorded."""

    def __init__(self, now: datetime | None = None) -> None:
        self.current = now or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        await asyncio.sleep(0)


class FakeHub:
    """In-memory hub and CAS server."""

    def __init__(self, endpoint: str = HUB, cas_url: str = CAS) -> None:
        self.endpoint = endpoint
        self.cas_url = cas_url
        self.token = CAS_TOKEN
        self.expiry = datetime(2099, 1, 1, tzinfo=timezone.utc)
        self.required_identity: str | None = None
        self.files: dict[tuple[str, str, str], dict] = {}
        self.blobs: dict[str, bytes] = {}
        # hash -> statuses returned before the blob is served
        self.failures: dict[str, list[int]] = {}
        # (hash, Range header) -> status returned for that range only
        self.range_failures: dict[tuple[str, str], int] = {}
        self.requests: list[httpx.Request] = []
        self.delay = 0.0
        self.active = 0
        self.peak = 0

    # -- setup ---------------------------------------------------------------

    def add_blob(self, data: bytes) -> ContentDescriptor:
        digest = sha256(data)
        self.blobs[digest] = data
        return ContentDescriptor(hash=digest, size=len(data))

    def add_file(
        self, path: str, data: bytes, repo: str = REPO, revision: str = "main"
    ) -> ContentDescriptor:
        """File stored in CAS (announced via X-Xet-Hash)."""
        descriptor = self.add_blob(data)
        self.files[(_full_name(repo), revision, path)] = {
            "body": b"",
            "size": len(data),
            "xet_hash": descriptor.hash,
        }
        return descriptor

    def add_plain(
        self, path: str, body: bytes, repo: str = REPO, revision: str = "main"
    ) -> None:
        """Regular (non-CAS) file."""
        self.files[(_full_name(repo), revision, path)] = {
            "body": body,
            "size": len(body),
            "xet_hash": None,
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def cas_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/v1/content/")]

    def credential(self, **overrides) -> AccessCredential:
        values = {
            "token": self.token,
            "scope": CredentialScope(repo=REPO, revision="main", direction=Direction.DOWNLOAD),
            "expiry": self.expiry,
            "endpoint": self.cas_url,
        }
        values.update(overrides)
        return AccessCredential(**values)

    # -- routing -------------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        path = unquote(url.path)

        if url.host == urlsplit(self.cas_url).hostname:
            match = _CONTENT.match(path)
            if match:
                return await self._content(request, match.group(1))
            return httpx.Response(404)

        if match := _TOKEN.match(path):
            return self._token(request, match.group(1), match.group(2))
        if match := _TREE.match(path):
            return self._tree(match.group(1), match.group(2), match.group(3))
        if match := _RESOLVE.match(path):
            return self._resolve(request, *match.groups())
        return httpx.Response(404)

    def _authorized(self, request: httpx.Request) -> bool:
        if self.required_identity is None:
            return True
        return request.headers.get("authorization") == f"Bearer {self.required_identity}"

    def _resolve(self, request: httpx.Request, repo: str, revision: str, path: str):
        entry = self.files.get((repo, revision, path))
        if entry is None:
            return httpx.Response(404)
        headers = {
            "x-repo-commit": "abc123",
            "etag": '"etag-1"',
            "x-linked-size": str(entry["size"]),
        }
        if entry["xet_hash"]:
            headers["x-xet-hash"] = entry["xet_hash"]
            headers["link"] = (
                f'<{self.endpoint}/api/models/{repo}/xet-read-token/{revision}>; rel="xet-auth"'
            )
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, headers=headers, content=entry["body"])

    def _token(self, request: httpx.Request, repo: str, direction: str):
        if not self._authorized(request):
            return httpx.Response(401)
        if not any(key[0] == repo for key in self.files):
            return httpx.Response(404)
        return httpx.Response(
            200,
            headers={
                "x-xet-cas-url": self.cas_url,
                "x-xet-access-token": self.token if direction == "read" else "write-token",
                "x-xet-token-expiration": str(int(self.expiry.timestamp())),
            },
        )

    def _tree(self, repo: str, revision: str, prefix: str):
        prefix = prefix.strip("/")
        entries = []
        dirs = set()
        for (name, rev, path), entry in sorted(self.files.items()):
            if name != repo or rev != revision:
                continue
            if prefix and not path.startswith(prefix + "/"):
                continue
            rest = path[len(prefix) + 1 :] if prefix else path
            if "/" in rest:
                dirs.add(f"{prefix}/{rest.split('/')[0]}" if prefix else rest.split("/")[0])
                continue
            item = {"type": "file", "path": path, "size": entry["size"], "oid": "git-oid"}
            if entry["xet_hash"]:
                item["xetHash"] = entry["xet_hash"]
            entries.append(item)
        entries.extend({"type": "directory", "path": d, "oid": "tree-oid"} for d in sorted(dirs))
        if not entries and prefix:
            return httpx.Response(404)
        return httpx.Response(200, json=entries)

    async def _content(self, request: httpx.Request, content_hash: str):
        if request.headers.get("authorization") != f"Bearer {self.token}":
            return httpx.Response(401)
        pending = self.failures.get(content_hash)
        if pending:
            return httpx.Response(pending.pop(0))
        status = self.range_failures.get((content_hash, request.headers.get("range", "")))
        if status is not None:
            return httpx.Response(status)
        data = self.blobs.get(content_hash)
        if data is None:
            return httpx.Response(404)

        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1

        match = _RANGE.match(request.headers.get("range", ""))
        if not match:
            return httpx.Response(200, content=data)
        start, end = int(match.group(1)), int(match.group(2))
        if start >= len(data):
            return httpx.Response(416)
        return httpx.Response(
            206,
            content=data[start : end + 1],
            headers={"content-range": f"bytes {start}-{min(end, len(data) - 1)}/{len(data)}"},
        )


def _full_name(repo: str) -> str:
    parts = repo.strip("/").split("/")
    return "/".join(parts[-2:])

