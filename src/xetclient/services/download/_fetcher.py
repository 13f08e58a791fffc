"""
Chunk fetcher: one ranged read from the CAS endpoint.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from urllib.parse import quote

import httpx

from xetclient.exceptions import (
    AuthError,
    CredentialExpiredError,
    IntegrityError,
    NotFoundError,
    ProtocolError,
    ScopeMismatchError,
    TransientNetworkError,
)
from xetclient.models import AccessCredential, ChunkHandle, Direction
from xetclient.services.download._config import CAS_CONTENT_ROUTE

RETRYABLE_STATUS = frozenset({408, 425, 429})
CHECKSUM_HEADER = "x-checksum-mismatch"
CHECKSUM_CODES = frozenset({"checksum_mismatch", "integrity_error"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChunkFetcher:
    """
    Fetches a contiguous byte range of content identified by hash.

    Errors map onto the transfer taxonomy: NotFoundError (404), AuthError
    (401/403, expired or mis-scoped credential), TransientNetworkError
    (timeouts, connection errors, 408/425/429/5xx), IntegrityError
    (server checksum signal, wrong body length, unsatisfiable range),
    ProtocolError (undecodable body, redirect loop, other statuses).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        now: Callable[[], datetime] = _utcnow,
        timeout: float | None = None,
    ) -> None:
        self._http = http
        self._now = now
        self._timeout = timeout

    def content_url(self, endpoint: str, content_hash: str) -> str:
        return f"{endpoint.rstrip('/')}/{CAS_CONTENT_ROUTE}/{quote(content_hash, safe=':')}"

    def check_credential(self, credential: AccessCredential) -> None:
        """Reject a credential that is mis-scoped or past expiry."""
        if credential.scope.direction is not Direction.DOWNLOAD:
            raise ScopeMismatchError(credential.scope.direction.value, Direction.DOWNLOAD.value)
        if credential.is_expired(self._now()):
            raise CredentialExpiredError(credential.expiry)

    async def fetch(
        self,
        endpoint: str,
        chunk: ChunkHandle,
        credential: AccessCredential,
    ) -> bytes:
        """
        Read ``chunk.length`` bytes at ``chunk.offset``.

        Raises:
            AuthError, NotFoundError, TransientNetworkError, IntegrityError, ProtocolError
        """
        self.check_credential(credential)

        content_hash = chunk.descriptor.hash
        url = self.content_url(endpoint, content_hash)
        headers = {
            "Authorization": f"Bearer {credential.token}",
            "Range": chunk.range_header,
        }
        kwargs = {"timeout": self._timeout} if self._timeout is not None else {}

        try:
            response = await self._http.get(url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Timeout reading {chunk.range_header}", cause=e) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Connection error: {e}", cause=e) from e
        except (httpx.DecodingError, httpx.TooManyRedirects) as e:
            raise ProtocolError(f"Unreadable CAS response: {e}", cause=e) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Request failed: {e}", cause=e) from e

        self._raise_for_status(response, content_hash)
        return self._extract(response, chunk)

    @staticmethod
    def _raise_for_status(response: httpx.Response, content_hash: str) -> None:
        status = response.status_code
        if response.headers.get(CHECKSUM_HEADER):
            raise IntegrityError(f"Backend reported checksum mismatch for {content_hash}")
        if status in (200, 206):
            return
        if status in (401, 403):
            raise AuthError("CAS rejected credential", status_code=status)
        if status == 404:
            raise NotFoundError(content_hash)
        if status == 416:
            raise IntegrityError(f"Range not satisfiable for {content_hash}")
        if status in RETRYABLE_STATUS or status >= 500:
            raise TransientNetworkError(f"CAS returned HTTP {status}", status_code=status)
        if _error_code(response) in CHECKSUM_CODES:
            raise IntegrityError(f"Backend reported checksum mismatch for {content_hash}")
        raise ProtocolError("Unexpected CAS response", status_code=status)

    @staticmethod
    def _extract(response: httpx.Response, chunk: ChunkHandle) -> bytes:
        data = response.content
        # A server that ignores Range answers 200 with the whole object.
        if (
            response.status_code == 200
            and len(data) == chunk.descriptor.size
            and len(data) != chunk.length
        ):
            data = data[chunk.offset : chunk.offset + chunk.length]
        if len(data) != chunk.length:
            raise IntegrityError(
                f"Short read for {chunk.range_header}",
                expected=chunk.length,
                actual=len(data),
            )
        return data


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        code = error.get("code")
    else:
        code = body.get("code")
    return code if isinstance(code, str) else None


__all__ = ["ChunkFetcher"]
