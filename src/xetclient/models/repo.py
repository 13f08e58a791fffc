"""
Repository models and identifier parsing.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict

from xetclient.exceptions import InvalidInputError


class RepoType(str, Enum):
    MODEL = "model"
    DATASET = "dataset"
    SPACE = "space"

    @property
    def plural(self) -> str:
        """Form used in /api/ URLs."""
        return f"{self.value}s"

    @property
    def url_prefix(self) -> str:
        """Prefix used in canonical (non-API) URLs; models have none."""
        return "" if self is RepoType.MODEL else f"{self.plural}/"


_TYPE_ALIASES = {
    "model": RepoType.MODEL,
    "models": RepoType.MODEL,
    "dataset": RepoType.DATASET,
    "datasets": RepoType.DATASET,
    "space": RepoType.SPACE,
    "spaces": RepoType.SPACE,
}


class RepoInfo(BaseModel):
    """Repository type and ``owner/name``."""

    model_config = ConfigDict(frozen=True)

    repo_type: RepoType
    full_name: str

    @classmethod
    def parse(cls, repo: str) -> RepoInfo:
        """
        Parse a repository identifier.

        Supports ``owner/repo`` (model) and ``{models,datasets,spaces}/owner/repo``.

        Raises:
            InvalidInputError: If the identifier is empty or malformed.
        """
        repo = (repo or "").strip().strip("/")
        if not repo:
            raise InvalidInputError("Repository cannot be empty")

        parts = repo.split("/")
        if len(parts) < 2 or any(not p for p in parts):
            raise InvalidInputError(
                f"Repository identifier must be in format 'owner/repo' or "
                f"'type/owner/repo', got: {repo}"
            )

        repo_type = RepoType.MODEL
        if len(parts) >= 3 and parts[0].lower() in _TYPE_ALIASES:
            repo_type = _TYPE_ALIASES[parts[0].lower()]
            parts = parts[1:]

        if len(parts) != 2:
            raise InvalidInputError(f"Invalid repository: {repo}")

        return cls(repo_type=repo_type, full_name="/".join(parts))

    def api_url(self, endpoint: str, *segments: str) -> str:
        """``{endpoint}/api/{type}s/{full_name}/{segments...}``"""
        tail = "/".join(segments)
        base = f"{endpoint.rstrip('/')}/api/{self.repo_type.plural}/{self.full_name}"
        return f"{base}/{tail}" if tail else base

    def resolve_url(self, endpoint: str, path: str, revision: str) -> str:
        """Canonical file URL that serves the pointer headers."""
        return (
            f"{endpoint.rstrip('/')}/{self.repo_type.url_prefix}{self.full_name}"
            f"/resolve/{quote(revision, safe='')}/{quote(path, safe='/')}"
        )

    def __str__(self) -> str:
        return f"{self.repo_type.url_prefix}{self.full_name}"


class FileMetadata(BaseModel):
    """One entry of a repository tree listing."""

    path: str
    entry_type: str
    size: int | None = None
    hash: str | None = None
    oid: str | None = None

    @property
    def is_file(self) -> bool:
        return self.entry_type == "file"

    @classmethod
    def from_tree_entry(cls, entry: dict) -> FileMetadata:
        """Build from a tree API entry, taking the hash from xet or lfs info."""
        hash_value = None
        xet = entry.get("xetHash")
        lfs = entry.get("lfs")
        if isinstance(xet, str) and xet:
            hash_value = xet
        elif isinstance(lfs, dict) and isinstance(lfs.get("oid"), str):
            hash_value = lfs["oid"]
        return cls(
            path=entry["path"],
            entry_type=entry.get("type", "file"),
            size=entry.get("size"),
            hash=hash_value,
            oid=entry.get("oid"),
        )


class FileDownloadRequest(BaseModel):
    """Parameters for downloading one repository file to a local path."""

    repo: str
    path: str
    destination: str
    revision: str = "main"


__all__ = ["RepoType", "RepoInfo", "FileMetadata", "FileDownloadRequest"]
