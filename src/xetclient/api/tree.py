"""
Repository tree listing.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx

from xetclient.api._http import bearer
from xetclient.exceptions import ResolutionError
from xetclient.models import FileMetadata, RepoInfo


class TreeLister:
    """Lists repository directories through the hub tree API (follows pagination)."""

    def __init__(self, http: httpx.AsyncClient, endpoint: str) -> None:
        self._http = http
        self._endpoint = endpoint.rstrip("/")

    async def list_entries(
        self,
        repo: str,
        path: str = "",
        revision: str = "main",
        identity: str | None = None,
        recursive: bool = False,
    ) -> list[FileMetadata]:
        """
        List entries under ``path`` (repository root when empty).

        Raises:
            InvalidInputError: Malformed repository identifier.
            ResolutionError: Request failed or the listing could not be parsed.
        """
        info = RepoInfo.parse(repo)
        segments = ["tree", quote(revision, safe="")]
        if path:
            segments.append(quote(path.strip("/"), safe="/"))
        url: str | None = info.api_url(self._endpoint, *segments)
        params = {"recursive": "true"} if recursive else None

        entries: list[FileMetadata] = []
        while url:
            try:
                response = await self._http.get(url, headers=bearer(identity), params=params)
            except httpx.HTTPError as e:
                raise ResolutionError(f"Tree request failed: {e}", cause=e) from e
            if not response.is_success:
                raise ResolutionError(
                    f"Tree request for {info}/{path} returned HTTP {response.status_code}"
                )
            entries.extend(self._parse(response))
            url = response.links.get("next", {}).get("url")
            params = None
        return entries

    @staticmethod
    def _parse(response: httpx.Response) -> list[FileMetadata]:
        try:
            body = response.json()
        except ValueError as e:
            raise ResolutionError(f"Tree response is not JSON: {e}", cause=e) from e
        if isinstance(body, dict):
            body = body.get("tree") or []
        if not isinstance(body, list):
            raise ResolutionError("Unexpected tree response shape")
        try:
            return [FileMetadata.from_tree_entry(entry) for entry in body]
        except (KeyError, TypeError, ValueError) as e:
            raise ResolutionError(f"Malformed tree entry: {e}", cause=e) from e


__all__ = ["TreeLister"]
