"""
Transfer request/result models.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from xetclient.exceptions import TransferError
from xetclient.models.auth import AccessCredential
from xetclient.models.content import ContentDescriptor


class AtomicityMode(str, Enum):
    """How a failure on one descriptor affects the rest of the request."""

    ALL_OR_NOTHING = "all_or_nothing"
    PARTIAL = "partial"


class TransferRequest(BaseModel):
    """One download invocation: descriptors, where to put them, and how."""

    descriptors: list[ContentDescriptor] = Field(min_length=1)
    destination_dir: Path
    credential: AccessCredential
    filenames: list[str] | None = None

    @model_validator(mode="after")
    def _check_filenames(self) -> TransferRequest:
        if self.filenames is None:
            return self
        if len(self.filenames) != len(self.descriptors):
            raise ValueError("filenames must be index-aligned with descriptors")
        for name in self.filenames:
            if not name or Path(name).name != name or name in (".", ".."):
                raise ValueError(f"invalid file name: {name!r}")
        return self

    def filename_for(self, index: int) -> str:
        if self.filenames is not None:
            return self.filenames[index]
        return self.descriptors[index].digest.replace("/", "_")


class TransferStats(BaseModel):
    """Counters accumulated while a request runs."""

    bytes_transferred: int = 0
    chunks_count: int = 0
    retries_count: int = 0
    files_count: int = 0


class TransferResult(BaseModel):
    """
    Outcome of a download, index-aligned with the request's descriptors.

    ``paths[i]`` is the local file for descriptor ``i`` or None if it failed;
    ``errors`` maps failed indices to their error.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: list[Path | None]
    errors: dict[int, TransferError] = Field(default_factory=dict)
    stats: TransferStats = Field(default_factory=TransferStats)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def succeeded(self) -> list[int]:
        return [i for i, p in enumerate(self.paths) if p is not None]

    @property
    def failed(self) -> list[int]:
        return sorted(self.errors)

    def raise_for_errors(self) -> None:
        """Raise the error of the lowest failing index, if any."""
        if self.errors:
            raise self.errors[min(self.errors)]

    def as_strings(self) -> list[str]:
        self.raise_for_errors()
        return [str(p) for p in self.paths]

    def __repr__(self) -> str:
        return f"TransferResult(ok={len(self.succeeded)}, failed={len(self.errors)})"


__all__ = ["AtomicityMode", "TransferRequest", "TransferStats", "TransferResult"]
