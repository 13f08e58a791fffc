"""
Download service for xetclient.

Fetches content-addressed objects from a CAS endpoint in parallel ranged
reads and materializes them as verified files.

Features:
- Fixed-size ranges fetched concurrently under one bounded pool
- Per-chunk retry with jittered exponential backoff
- Staging files with hash verification and atomic rename
- All-or-nothing or per-file (partial) commit
"""

from xetclient.services.download._fetcher import ChunkFetcher
from xetclient.services.download._models import DownloadMetrics, TransferStats
from xetclient.services.download._pool import FetchPool
from xetclient.services.download._retry import (
    ChunkState,
    ChunkTask,
    Clock,
    RetryPolicy,
    SystemClock,
)
from xetclient.services.download._transfer import TransferOrchestrator
from xetclient.services.download._writer import ReassemblyWriter, WriteHandle

__all__ = [
    "ChunkFetcher",
    "ChunkState",
    "ChunkTask",
    "Clock",
    "DownloadMetrics",
    "FetchPool",
    "ReassemblyWriter",
    "RetryPolicy",
    "SystemClock",
    "TransferOrchestrator",
    "TransferStats",
    "WriteHandle",
]
