"""
Models for download service.
"""

from __future__ import annotations

from pydantic import BaseModel

from xetclient.models import TransferResult, TransferStats


class DownloadMetrics(BaseModel):
    """Metrics for a download operation."""

    # Timing (seconds)
    total_time: float = 0.0
    resolve_time: float = 0.0
    transfer_time: float = 0.0

    # Sizes (bytes)
    transferred_size: int = 0

    # Transfer details
    files_count: int = 0
    failed_count: int = 0
    chunks_count: int = 0
    retries_count: int = 0

    @classmethod
    def from_result(cls, result: TransferResult, resolve_time: float = 0.0) -> DownloadMetrics:
        stats = result.stats
        return cls(
            total_time=resolve_time + result.elapsed,
            resolve_time=resolve_time,
            transfer_time=result.elapsed,
            transferred_size=stats.bytes_transferred,
            files_count=stats.files_count,
            failed_count=len(result.errors),
            chunks_count=stats.chunks_count,
            retries_count=stats.retries_count,
        )

    @property
    def transfer_speed_mbps(self) -> float:
        """Transfer speed in MB/s."""
        if self.transfer_time <= 0:
            return 0.0
        return (self.transferred_size / 1024 / 1024) / self.transfer_time

    @property
    def total_speed_mbps(self) -> float:
        """Total speed including resolution in MB/s."""
        if self.total_time <= 0:
            return 0.0
        return (self.transferred_size / 1024 / 1024) / self.total_time

    def summary(self) -> str:
        """Human-readable summary."""
        size_mb = self.transferred_size / 1024 / 1024
        lines = [
            f"Size: {size_mb:.1f} MB ({self.transferred_size:,} bytes)",
            f"Total: {self.total_time:.1f}s @ {self.total_speed_mbps:.1f} MB/s",
        ]
        if self.resolve_time > 0:
            lines.append(f"  └─ Resolve: {self.resolve_time:.1f}s")
        if self.transfer_time > 0:
            lines.append(
                f"  └─ Transfer: {self.transfer_time:.1f}s @ {self.transfer_speed_mbps:.1f} MB/s"
            )
        if self.files_count > 1:
            lines.append(f"Files: {self.files_count}")
        if self.failed_count > 0:
            lines.append(f"Failed: {self.failed_count}")
        if self.chunks_count > 0:
            lines.append(f"Chunks: {self.chunks_count}")
        if self.retries_count > 0:
            lines.append(f"Retries: {self.retries_count}")
        return "\n".join(lines)


__all__ = ["DownloadMetrics", "TransferStats"]
