"""
CAS credential issuance.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from xetclient.api._http import bearer, header_value
from xetclient.exceptions import AuthError
from xetclient.logging import get_logger
from xetclient.models import AccessCredential, CredentialScope, Direction, RepoInfo

logger = get_logger(__name__)

HEADER_CAS_URL = "x-xet-cas-url"
HEADER_ACCESS_TOKEN = "x-xet-access-token"
HEADER_EXPIRATION = "x-xet-token-expiration"


class CasAuthProvider:
    """
    Exchanges a repository reference for a scoped CAS credential.

    Every call returns a fresh credential; nothing is cached.

    Example:
        >>> provider = CasAuthProvider(http, "https://huggingface.co")
        >>> cred = await provider.authorize("Qwen/Qwen3-0.6B", "main")
        >>> cred.scope.direction
        <Direction.DOWNLOAD: 'download'>
    """

    def __init__(self, http: httpx.AsyncClient, endpoint: str) -> None:
        self._http = http
        self._endpoint = endpoint.rstrip("/")

    def token_url(self, repo: RepoInfo, revision: str, direction: Direction) -> str:
        return repo.api_url(self._endpoint, direction.token_route, revision)

    async def authorize(
        self,
        repo: str,
        revision: str = "main",
        direction: Direction = Direction.DOWNLOAD,
        identity: str | None = None,
        route: str | None = None,
    ) -> AccessCredential:
        """
        Obtain a credential for ``direction`` on ``repo@revision``.

        Args:
            repo: Repository identifier.
            revision: Branch, tag, or commit.
            direction: Upload or download scope.
            identity: Optional hub bearer token.
            route: Credential URL announced by the hub (overrides the default route).

        Raises:
            InvalidInputError: Malformed repository identifier.
            AuthError: Identity missing/invalid, scope rejected, or unusable response.
        """
        info = RepoInfo.parse(repo)
        direction = Direction(direction)
        url = route or self.token_url(info, revision, direction)

        try:
            response = await self._http.get(url, headers=bearer(identity))
        except httpx.HTTPError as e:
            raise AuthError(f"Credential request failed: {e}", cause=e) from e

        if response.status_code in (401, 403):
            raise AuthError(
                "Identity missing or not permitted for this repository",
                status_code=response.status_code,
            )
        if response.status_code == 404:
            raise AuthError(
                f"Unknown repository or revision: {info}@{revision}",
                status_code=404,
            )
        if not response.is_success:
            raise AuthError("Credential request rejected", status_code=response.status_code)

        cas_url, token, expiry = self._parse(response)
        logger.debug(f"Issued {direction.value} credential for {info}@{revision}, expires {expiry}")

        return AccessCredential(
            token=token,
            scope=CredentialScope(repo=repo, revision=revision, direction=direction),
            expiry=expiry,
            endpoint=cas_url,
        )

    @staticmethod
    def _parse(response: httpx.Response) -> tuple[str, str, datetime]:
        headers = response.headers
        cas_url = header_value(headers, HEADER_CAS_URL)
        token = header_value(headers, HEADER_ACCESS_TOKEN)
        exp: object = header_value(headers, HEADER_EXPIRATION)

        if not (cas_url and token and exp):
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict):
                cas_url = cas_url or body.get("casUrl")
                token = token or body.get("accessToken")
                exp = exp or body.get("exp")

        if not cas_url:
            raise AuthError("CAS endpoint missing from credential response")
        if not token:
            raise AuthError("CAS access token missing from credential response")
        try:
            expiry = datetime.fromtimestamp(int(exp), tz=timezone.utc)  # type: ignore[arg-type]
        except (TypeError, ValueError, OverflowError) as e:
            raise AuthError(f"Invalid credential expiration: {exp!r}", cause=e) from e
        return str(cas_url), str(token), expiry


__all__ = ["CasAuthProvider"]
