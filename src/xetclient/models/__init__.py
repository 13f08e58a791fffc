"""
Data models for xetclient.
"""

from xetclient.models.auth import AccessCredential, CredentialScope, Direction
from xetclient.models.content import ChunkHandle, ContentDescriptor, plan_chunks
from xetclient.models.repo import FileDownloadRequest, FileMetadata, RepoInfo, RepoType
from xetclient.models.transfer import (
    AtomicityMode,
    TransferRequest,
    TransferResult,
    TransferStats,
)

__all__ = [
    "AccessCredential",
    "CredentialScope",
    "Direction",
    "ChunkHandle",
    "ContentDescriptor",
    "plan_chunks",
    "FileDownloadRequest",
    "FileMetadata",
    "RepoInfo",
    "RepoType",
    "AtomicityMode",
    "TransferRequest",
    "TransferResult",
    "TransferStats",
]
