"""
Reassembly writer: staging files, verification, atomic commit.

A WriteHandle owns one staging file next to its final path. On every exit
path the final path holds either a complete, hash-verified file or nothing.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import secrets
import time
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from xetclient.exceptions import IntegrityError
from xetclient.logging import get_logger
from xetclient.models import ContentDescriptor
from xetclient.services.download._config import HASH_BLOCK_SIZE, STAGING_SUFFIX

logger = get_logger(__name__)


class HandleState(str, Enum):
    OPEN = "open"
    VERIFIED = "verified"
    COMMITTED = "committed"
    ABORTED = "aborted"


class WriteHandle:
    """Staging file for one descriptor."""

    def __init__(
        self,
        writer: ReassemblyWriter,
        descriptor: ContentDescriptor,
        final_path: Path,
        staging_path: Path,
        file: BinaryIO,
    ) -> None:
        self.writer = writer
        self.descriptor = descriptor
        self.final_path = final_path
        self.staging_path = staging_path
        self.state = HandleState.OPEN
        self.bytes_written = 0
        self._file: BinaryIO | None = file

    @property
    def closed(self) -> bool:
        return self.state in (HandleState.COMMITTED, HandleState.ABORTED)

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> WriteHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        if self.state is not HandleState.COMMITTED:
            self.writer.abort(self)

    async def __aenter__(self) -> WriteHandle:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.__exit__(*exc)

    def __repr__(self) -> str:
        return f"WriteHandle({self.final_path.name}, {self.state.value})"


class ReassemblyWriter:
    """
    Places fetched chunks into pre-sized staging files and commits them.

    Example:
        >>> writer = ReassemblyWriter()
        >>> with writer.open(dest_dir, descriptor) as handle:
        ...     writer.write(handle, 0, data)
        ...     path = await writer.finalize(handle)
    """

    def __init__(self, hash_algorithm: str = "sha256") -> None:
        self.hash_algorithm = hash_algorithm

    def open(
        self,
        destination_dir: Path | str,
        descriptor: ContentDescriptor,
        filename: str | None = None,
    ) -> WriteHandle:
        """Create a staging file sized to ``descriptor.size``."""
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        name = filename or descriptor.digest
        final_path = destination_dir / name
        staging_path = destination_dir / f".{name}.{secrets.token_hex(6)}{STAGING_SUFFIX}"

        f = open(staging_path, "x+b")
        try:
            f.truncate(descriptor.size)
        except BaseException:
            f.close()
            staging_path.unlink(missing_ok=True)
            raise
        return WriteHandle(self, descriptor, final_path, staging_path, f)

    def write(self, handle: WriteHandle, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset``; chunks may arrive in any order."""
        if handle.state is not HandleState.OPEN or handle._file is None:
            raise ValueError(f"{handle!r} is not open for writing")
        if offset < 0 or offset + len(data) > handle.descriptor.size:
            raise IntegrityError(
                "Chunk outside content bounds",
                expected=handle.descriptor.size,
                actual=offset + len(data),
            )
        handle._file.seek(offset)
        handle._file.write(data)
        handle.bytes_written += len(data)

    async def verify(self, handle: WriteHandle) -> None:
        """
        Check the staging file's length and digest against the descriptor.

        Hashing runs in a worker thread. On mismatch the staging file is
        deleted and IntegrityError raised.
        """
        if handle.state is not HandleState.OPEN or handle._file is None:
            raise ValueError(f"{handle!r} cannot be verified")
        descriptor = handle.descriptor
        f = handle._file
        f.flush()
        os.fsync(f.fileno())
        handle._close_file()

        try:
            size = handle.staging_path.stat().st_size
            if size != descriptor.size or handle.bytes_written != descriptor.size:
                raise IntegrityError(
                    f"Length mismatch for {descriptor.hash}",
                    expected=descriptor.size,
                    actual=handle.bytes_written if size == descriptor.size else size,
                )
            algorithm = descriptor.algorithm or self.hash_algorithm
            digest = await asyncio.to_thread(_file_digest, handle.staging_path, algorithm)
            if digest != descriptor.digest:
                raise IntegrityError(
                    f"Hash mismatch ({algorithm})", expected=descriptor.digest, actual=digest
                )
        except BaseException:
            self.abort(handle)
            raise
        handle.state = HandleState.VERIFIED

    def commit(self, handle: WriteHandle) -> Path:
        """Atomically rename a verified staging file onto its final path."""
        if handle.state is not HandleState.VERIFIED:
            raise ValueError(f"{handle!r} must be verified before commit")
        os.replace(handle.staging_path, handle.final_path)
        handle.state = HandleState.COMMITTED
        logger.debug(f"Committed {handle.final_path}")
        return handle.final_path

    async def finalize(self, handle: WriteHandle) -> Path:
        """Verify then commit."""
        await self.verify(handle)
        return self.commit(handle)

    def abort(self, handle: WriteHandle) -> None:
        """Close and delete the staging file. Idempotent; a no-op once committed."""
        if handle.closed:
            return
        handle._close_file()
        handle.staging_path.unlink(missing_ok=True)
        handle.state = HandleState.ABORTED

    def revoke(self, handle: WriteHandle) -> None:
        """Remove a committed file (request-level rollback)."""
        if handle.state is HandleState.COMMITTED:
            handle.final_path.unlink(missing_ok=True)
            handle.state = HandleState.ABORTED

    @staticmethod
    def sweep(destination_dir: Path | str, older_than: float = 0.0) -> int:
        """
        Delete orphaned staging files left by a crashed run.

        Args:
            destination_dir: Directory to scan (non-recursive).
            older_than: Only files not modified for this many seconds.

        Returns:
            Number of files removed.
        """
        destination_dir = Path(destination_dir)
        if not destination_dir.is_dir():
            return 0
        cutoff = time.time() - older_than
        removed = 0
        for path in destination_dir.glob(f".*{STAGING_SUFFIX}"):
            try:
                if path.is_file() and path.stat().st_mtime <= cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info(f"Removed {removed} orphaned staging file(s) from {destination_dir}")
        return removed


def _file_digest(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        while block := f.read(HASH_BLOCK_SIZE):
            h.update(block)
    return h.hexdigest()


__all__ = ["ReassemblyWriter", "WriteHandle", "HandleState"]
