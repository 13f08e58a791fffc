"""
xetclient - content-addressed storage download client.

Resolves repository files to content hashes, obtains scoped CAS credentials,
and downloads content in parallel verified chunks.

Usage:
    >>> from xetclient import AsyncXetClient
    >>>
    >>> async with AsyncXetClient(token="hf_xxx") as client:
    ...     descriptor = await client.resolve("Qwen/Qwen3-0.6B", "model.safetensors")
    ...     credential = await client.authorize("Qwen/Qwen3-0.6B")
    ...     paths = await client.download([descriptor], "./out", credential)

Blocking usage:
    >>> from xetclient import XetClient
    >>> client = XetClient()
    >>> client.download_file("Qwen/Qwen3-0.6B", "tokenizer.json", "./tokenizer.json")
"""

from __future__ import annotations

from xetclient._version import __version__
from xetclient.client import AsyncXetClient, XetClient
from xetclient.config import SDKSettings, configure_settings, get_settings, reset_settings
from xetclient.exceptions import (
    AuthError,
    CredentialExpiredError,
    ErrorKind,
    IntegrityError,
    InvalidInputError,
    NotFoundError,
    ProtocolError,
    ResolutionError,
    ScopeMismatchError,
    TransferError,
    TransientNetworkError,
    XetError,
)
from xetclient.logging import get_logger, setup_logging
from xetclient.models import (
    AccessCredential,
    AtomicityMode,
    ContentDescriptor,
    CredentialScope,
    Direction,
    FileDownloadRequest,
    FileMetadata,
    RepoInfo,
    RepoType,
    TransferResult,
)
from xetclient.services.download import FetchPool

__all__ = [
    "__version__",
    # Clients
    "AsyncXetClient",
    "XetClient",
    "FetchPool",
    # Config
    "SDKSettings",
    "get_settings",
    "configure_settings",
    "reset_settings",
    # Logging
    "get_logger",
    "setup_logging",
    # Models
    "AccessCredential",
    "AtomicityMode",
    "ContentDescriptor",
    "CredentialScope",
    "Direction",
    "FileDownloadRequest",
    "FileMetadata",
    "RepoInfo",
    "RepoType",
    "TransferResult",
    # Exceptions
    "XetError",
    "ErrorKind",
    "InvalidInputError",
    "ResolutionError",
    "AuthError",
    "CredentialExpiredError",
    "ScopeMismatchError",
    "NotFoundError",
    "IntegrityError",
    "ProtocolError",
    "TransientNetworkError",
    "TransferError",
]
