"""
Tests for the transfer orchestrator.
"""

import asyncio
import random
from datetime import timedelta

import httpx
import pytest

from fakes import blob, sha256
from xetclient.config import SDKSettings
from xetclient.exceptions import ErrorKind, InvalidInputError, TransferError
from xetclient.models import (
    AtomicityMode,
    ContentDescriptor,
    CredentialScope,
    Direction,
    TransferRequest,
)
from xetclient.services.download import FetchPool, TransferOrchestrator


def make_request(hub, destination, descriptors, filenames=None, **credential) -> TransferRequest:
    return TransferRequest(
        descriptors=descriptors,
        destination_dir=destination,
        credential=hub.credential(**credential),
        filenames=filenames,
    )


def leftovers(directory):
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir())


class TestTransferSuccess:
    """Test successful transfers."""

    @pytest.mark.asyncio
    async def test_multiple_files(self, hub, make_orchestrator, tmp_path):
        """Test several files with chunk and byte counts."""
        payloads = [blob(100, seed=1), blob(37, seed=2), blob(16, seed=3)]
        descriptors = [hub.add_blob(p) for p in payloads]
        dest = tmp_path / "out"

        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, dest, descriptors, ["a.bin", "b.bin", "c.bin"])
            )

        assert result.ok
        assert [p.name for p in result.paths] == ["a.bin", "b.bin", "c.bin"]
        for path, payload, descriptor in zip(result.paths, payloads, descriptors):
            assert path.read_bytes() == payload
            assert sha256(path.read_bytes()) == descriptor.hash
        assert leftovers(dest) == ["a.bin", "b.bin", "c.bin"]

        # 100 -> 7 chunks, 37 -> 3, 16 -> 1
        assert result.stats.chunks_count == 11
        assert result.stats.bytes_transferred == 153
        assert result.stats.files_count == 3
        assert result.stats.retries_count == 0
        assert len(hub.cas_requests()) == 11

    @pytest.mark.asyncio
    async def test_default_names_are_digests(self, hub, make_orchestrator, tmp_path):
        """Test files are named by digest without filenames."""
        descriptor = hub.add_blob(blob(20))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor])
            )
        assert result.paths[0].name == descriptor.digest

    @pytest.mark.asyncio
    async def test_completion_order_does_not_matter(self, hub, make_orchestrator, tmp_path):
        """Test chunks completing in random order."""
        rng = random.Random(3)

        async def shuffled(request):
            await asyncio.sleep(rng.random() * 0.01)
            return await hub.handler(request)

        payload = blob(500, seed=9)
        descriptor = hub.add_blob(payload)
        async with httpx.AsyncClient(transport=httpx.MockTransport(shuffled)) as http:
            result = await make_orchestrator(http, capacity=8).download(
                make_request(hub, tmp_path, [descriptor], ["big.bin"])
            )
        assert result.paths[0].read_bytes() == payload

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, hub, make_orchestrator, tmp_path):
        """Test in-flight fetches never exceed pool capacity."""
        hub.delay = 0.005
        descriptors = [hub.add_blob(blob(64, seed=i)) for i in range(5)]
        pool = FetchPool(3)

        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http, pool=pool).download(
                make_request(hub, tmp_path, descriptors, [f"f{i}" for i in range(5)])
            )

        assert result.ok
        assert hub.peak <= 3
        assert 1 <= pool.peak <= 3
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_zero_size_file(self, hub, make_orchestrator, tmp_path):
        """Test zero-size file needs no CAS request."""
        descriptor = ContentDescriptor(hash=sha256(b""), size=0)
        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor], ["empty"])
            )
        assert result.paths[0].read_bytes() == b""
        assert hub.cas_requests() == []

    @pytest.mark.asyncio
    async def test_progress(self, hub, make_orchestrator, tmp_path):
        """Test progress callback is monotonic and ends at the total."""
        descriptor = hub.add_blob(blob(50))
        updates = []
        async with httpx.AsyncClient(transport=hub.transport) as http:
            await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor], ["p"]),
                on_progress=lambda done, total: updates.append((done, total)),
            )
        assert len(updates) == 4
        assert updates[-1] == (50, 50)
        assert [d for d, _ in updates] == sorted(d for d, _ in updates)

    @pytest.mark.asyncio
    async def test_from_settings(self, hub, clock, tmp_path):
        """Test orchestrator built from settings."""
        settings = SDKSettings(chunk_size=64 * 1024, max_concurrent_fetches=2)
        payload = blob(200 * 1024)
        descriptor = hub.add_blob(payload)
        async with httpx.AsyncClient(transport=hub.transport) as http:
            orchestrator = TransferOrchestrator.from_settings(http, settings, clock=clock)
            assert orchestrator.capacity == 2
            result = await orchestrator.download(make_request(hub, tmp_path, [descriptor], ["x"]))
        assert result.stats.chunks_count == 4
        assert result.paths[0].read_bytes() == payload

    def test_invalid_chunk_size(self, make_orchestrator):
        """Test non-positive chunk size."""
        with pytest.raises(ValueError):
            make_orchestrator(None, chunk_size=0)


class TestDeduplication:
    """Test descriptors that share a final path."""

    @pytest.mark.asyncio
    async def test_same_content_fetched_once(self, hub, make_orchestrator, tmp_path):
        """Test same path and hash is fetched once."""
        descriptor = hub.add_blob(blob(32))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor, descriptor], ["a", "a"])
            )
        assert result.paths[0] == result.paths[1] == tmp_path / "a"
        assert len(hub.cas_requests()) == 2

    @pytest.mark.asyncio
    async def test_conflicting_content_rejected(self, hub, make_orchestrator, tmp_path):
        """Test same path with different hashes is rejected before fetching."""
        first = hub.add_blob(blob(8, seed=1))
        second = hub.add_blob(blob(8, seed=2))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(InvalidInputError):
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [first, second], ["a", "a"])
                )
        assert hub.cas_requests() == []


class TestRetries:
    """Test transient failure handling."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, hub, clock, make_orchestrator, tmp_path):
        """Test 503 and 429 are retried with backoff."""
        payload = blob(16)
        descriptor = hub.add_blob(payload)
        hub.failures[descriptor.hash] = [503, 429]

        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor], ["r"])
            )

        assert result.paths[0].read_bytes() == payload
        assert result.stats.retries_count == 2
        assert len(hub.cas_requests()) == 3
        assert len(clock.sleeps) == 2
        assert all(0 < s <= 0.05 for s in clock.sleeps)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, hub, clock, make_orchestrator, tmp_path):
        """Test transient error after the last attempt."""
        descriptor = hub.add_blob(blob(16))
        hub.failures[descriptor.hash] = [503] * 10

        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["r"])
                )

        assert exc_info.value.kind is ErrorKind.TRANSIENT
        assert exc_info.value.descriptor_index == 0
        assert exc_info.value.retryable
        assert len(hub.cas_requests()) == 3
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, hub, clock, make_orchestrator, tmp_path):
        """Test 404 fails without retry."""
        descriptor = ContentDescriptor(hash=sha256(b"missing"), size=10)
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["m"])
                )
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert len(hub.cas_requests()) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_transient(self, hub, clock, make_orchestrator, tmp_path):
        """Test per-attempt timeout is retried as transient."""
        hub.delay = 5
        descriptor = hub.add_blob(blob(8))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http, attempt_timeout=0.01).download(
                    make_request(hub, tmp_path, [descriptor], ["t"])
                )
        assert exc_info.value.kind is ErrorKind.TRANSIENT
        assert len(clock.sleeps) == 2
        assert leftovers(tmp_path) == []


class TestAllOrNothing:
    """Test the default atomicity mode."""

    @pytest.mark.asyncio
    async def test_failure_leaves_no_files(self, hub, make_orchestrator, tmp_path):
        """Test one missing descriptor leaves no files behind."""
        good = hub.add_blob(blob(64))
        missing = ContentDescriptor(hash=sha256(b"missing"), size=64)
        dest = tmp_path / "out"

        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, dest, [good, missing], ["good", "missing"])
                )

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.descriptor_index == 1
        assert leftovers(dest) == []

    @pytest.mark.asyncio
    async def test_integrity_failure(self, hub, make_orchestrator, tmp_path):
        """Test hash mismatch fails without retry."""
        wrong_hash = sha256(b"something else")
        hub.blobs[wrong_hash] = blob(20)
        descriptor = ContentDescriptor(hash=wrong_hash, size=20)

        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["bad"])
                )

        assert exc_info.value.kind is ErrorKind.INTEGRITY
        assert not exc_info.value.retryable
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_expired_credential(self, hub, clock, make_orchestrator, tmp_path):
        """Test expired credential fails before any CAS request."""
        descriptors = [hub.add_blob(blob(32, seed=i)) for i in range(3)]
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(
                        hub,
                        tmp_path,
                        descriptors,
                        ["a", "b", "c"],
                        expiry=clock.now() - timedelta(minutes=1),
                    )
                )
        assert exc_info.value.kind is ErrorKind.AUTH
        assert hub.cas_requests() == []
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_upload_credential_rejected(self, hub, make_orchestrator, tmp_path):
        """Test upload-scoped credential fails before any CAS request."""
        descriptor = hub.add_blob(blob(8))
        scope = CredentialScope(repo="acme/widgets", revision="main", direction=Direction.UPLOAD)
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["u"], scope=scope)
                )
        assert exc_info.value.kind is ErrorKind.AUTH
        assert hub.cas_requests() == []

    @pytest.mark.asyncio
    async def test_overall_timeout(self, hub, make_orchestrator, tmp_path):
        """Test overall timeout has no descriptor index."""
        hub.delay = 5
        descriptor = hub.add_blob(blob(64))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["slow"]), timeout=0.05
                )
        assert exc_info.value.kind is ErrorKind.TRANSIENT
        assert exc_info.value.descriptor_index is None
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up(self, hub, make_orchestrator, tmp_path):
        """Test cancelling the task removes staging files."""
        hub.delay = 5
        descriptor = hub.add_blob(blob(64))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            task = asyncio.create_task(
                make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["slow"])
                )
            )
            while hub.active == 0:
                await asyncio.sleep(0.001)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert leftovers(tmp_path) == []


class TestPartial:
    """Test per-file commit mode."""

    @pytest.mark.asyncio
    async def test_failures_reported_per_index(self, hub, make_orchestrator, tmp_path):
        """Test failed index is reported and the others commit."""
        good = hub.add_blob(blob(40, seed=1))
        missing = ContentDescriptor(hash=sha256(b"missing"), size=40)
        other = hub.add_blob(blob(40, seed=2))

        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [good, missing, other], ["a", "b", "c"]),
                mode=AtomicityMode.PARTIAL,
            )

        assert not result.ok
        assert result.succeeded == [0, 2]
        assert result.failed == [1]
        assert result.errors[1].kind is ErrorKind.NOT_FOUND
        assert result.paths[1] is None
        assert result.stats.files_count == 2
        assert leftovers(tmp_path) == ["a", "c"]
        with pytest.raises(TransferError):
            result.as_strings()

    @pytest.mark.asyncio
    async def test_all_succeed(self, hub, make_orchestrator, tmp_path):
        """Test partial mode with no failures."""
        descriptor = hub.add_blob(blob(20))
        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http).download(
                make_request(hub, tmp_path, [descriptor], ["a"]),
                mode=AtomicityMode.PARTIAL,
            )
        assert result.as_strings() == [str(tmp_path / "a")]


class TestChunkFailures:
    """Test failures on individual chunks of multi-chunk files."""

    @pytest.mark.asyncio
    async def test_missing_last_chunk_partial(self, hub, make_orchestrator, tmp_path):
        """A 404 after earlier chunks landed drops that file and keeps its sibling."""
        broken = hub.add_blob(blob(64, seed=1))
        sibling_payload = blob(16, seed=2)
        sibling = hub.add_blob(sibling_payload)
        hub.range_failures[(broken.hash, "bytes=48-63")] = 404

        async with httpx.AsyncClient(transport=hub.transport) as http:
            result = await make_orchestrator(http, capacity=1).download(
                make_request(hub, tmp_path, [broken, sibling], ["broken", "sibling"]),
                mode=AtomicityMode.PARTIAL,
            )

        assert result.failed == [0]
        assert result.errors[0].kind is ErrorKind.NOT_FOUND
        assert result.errors[0].descriptor_index == 0
        assert result.succeeded == [1]
        assert (tmp_path / "sibling").read_bytes() == sibling_payload
        assert leftovers(tmp_path) == ["sibling"]
        # three chunks of the broken file plus the sibling's one
        assert result.stats.chunks_count == 4
        assert len(hub.cas_requests()) == 5

    @pytest.mark.asyncio
    async def test_missing_middle_chunk_all_or_nothing(self, hub, make_orchestrator, tmp_path):
        """A 404 on one range fails the whole request with that descriptor's index."""
        first = hub.add_blob(blob(16, seed=1))
        broken = hub.add_blob(blob(64, seed=2))
        hub.range_failures[(broken.hash, "bytes=16-31")] = 404

        async with httpx.AsyncClient(transport=hub.transport) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [first, broken], ["first", "broken"])
                )

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.descriptor_index == 1
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_undecodable_body(self, hub, make_orchestrator, tmp_path):
        """A body that fails content decoding surfaces as a protocol TransferError."""

        def garbled(request):
            return httpx.Response(
                206, content=b"x" * 16, headers={"content-encoding": "gzip"}
            )

        descriptor = ContentDescriptor(hash=sha256(b"x" * 16), size=16)
        async with httpx.AsyncClient(transport=httpx.MockTransport(garbled)) as http:
            with pytest.raises(TransferError) as exc_info:
                await make_orchestrator(http).download(
                    make_request(hub, tmp_path, [descriptor], ["g"])
                )

        assert exc_info.value.kind is ErrorKind.PROTOCOL
        assert exc_info.value.descriptor_index == 0
        assert not exc_info.value.retryable
        assert leftovers(tmp_path) == []
