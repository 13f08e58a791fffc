"""
Content models: descriptors and chunk work units.
"""

from __future__ import annotations

import hashlib
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

_PREFIXED_HASH = re.compile(r"^(?P<algo>[a-z0-9_-]+):(?P<digest>.+)$", re.IGNORECASE)


class ContentDescriptor(BaseModel):
    """
    Identifies a file's content independent of its name or location.

    Two descriptors with equal ``hash`` refer to identical bytes. ``size`` is
    used for pre-allocation and verification only.

    Example:
        >>> d = ContentDescriptor(hash="sha256:6aec...", size=11422654)
        >>> d.digest
        '6aec...'
    """

    model_config = ConfigDict(frozen=True)

    hash: str = Field(min_length=1)
    size: int = Field(ge=0, lt=2**64)

    @field_validator("hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        value = value.strip().strip('"')
        if not value:
            raise ValueError("hash must not be empty")
        return value

    @property
    def algorithm(self) -> str | None:
        """Hash algorithm named by an ``algo:`` prefix, if any."""
        match = _PREFIXED_HASH.match(self.hash)
        if match and match.group("algo").lower() in hashlib.algorithms_available:
            return match.group("algo").lower()
        return None

    @property
    def digest(self) -> str:
        """Hex digest without any algorithm prefix, lowercased."""
        if self.algorithm is None:
            return self.hash.lower()
        return self.hash.split(":", 1)[1].lower()

    def __str__(self) -> str:
        return f"{self.hash} ({self.size:,} bytes)"


class ChunkHandle(BaseModel):
    """Contiguous byte range of one descriptor's content."""

    model_config = ConfigDict(frozen=True)

    descriptor: ContentDescriptor
    offset: int = Field(ge=0)
    length: int = Field(gt=0, lt=2**32)

    @property
    def end(self) -> int:
        """Inclusive index of the last byte."""
        return self.offset + self.length - 1

    @property
    def range_header(self) -> str:
        return f"bytes={self.offset}-{self.end}"


def plan_chunks(descriptor: ContentDescriptor, chunk_size: int) -> list[ChunkHandle]:
    """
    Partition a descriptor's byte range into chunk handles.

    The last handle may be shorter than ``chunk_size``; an empty file yields
    no handles.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [
        ChunkHandle(
            descriptor=descriptor,
            offset=offset,
            length=min(chunk_size, descriptor.size - offset),
        )
        for offset in range(0, descriptor.size, chunk_size)
    ]


__all__ = ["ContentDescriptor", "ChunkHandle", "plan_chunks"]
