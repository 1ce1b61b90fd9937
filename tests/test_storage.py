"""
Test Blob Storage

Upload retry ceiling, single-attempt downloads and the combined blob
format.
"""

import asyncio
import json

import pytest

from data_wallet.core.errors import BlobNotFound, TransportError, UploadFailed
from data_wallet.core.identity import Identity
from data_wallet.core.storage import BlobStorageClient, combine, split
from data_wallet.services.base import estimate_storage_cost
from data_wallet.services.local import MemoryBlobStore


class FlakyStore(MemoryBlobStore):
    """Fails the first `failures` writes"""

    def __init__(self, failures: int, error: Exception = None):
        super().__init__()
        self.failures = failures
        self.error = error or TransportError("publisher unavailable", status_code=503)
        self.writes = 0
        self.reads = 0

    async def write_blob(self, data, epochs, deletable, owner):
        self.writes += 1
        if self.writes <= self.failures:
            raise self.error
        return await super().write_blob(data, epochs, deletable, owner)

    async def read_blob(self, blob_id):
        self.reads += 1
        return await super().read_blob(blob_id)


class TestCombinedBlob:
    """Tests for combine/split"""

    def test_split_inverts_combine(self):
        objects = {"email": b"\x00\x01\xff", "discord": b"abc"}
        assert split(combine(objects)) == objects

    def test_format_is_json_byte_arrays(self):
        assert json.loads(combine({"a": b"\x01\x02"})) == {"a": [1, 2]}

    @pytest.mark.parametrize("blob", [
        b"\xff\xfe",
        b"not json",
        b"[1, 2]",
        b'{"a": "text"}',
        b'{"a": [256]}',
    ])
    def test_malformed_blob(self, blob):
        with pytest.raises(ValueError):
            split(blob)


class TestUpload:
    """Tests for upload retries"""

    def setup_method(self):
        self.owner = Identity.generate(name="owner")

    @pytest.mark.asyncio
    async def test_succeeds_within_ceiling(self):
        store = FlakyStore(failures=2)
        client = BlobStorageClient(store, retry_ceiling=3)

        blob_id = await client.upload(b"payload", self.owner)

        assert store.writes == 3
        assert store.blobs[blob_id] == b"payload"
        assert store.owners[blob_id] == self.owner.address

    @pytest.mark.asyncio
    async def test_exhausted_ceiling_raises_upload_failed(self):
        store = FlakyStore(failures=10)
        client = BlobStorageClient(store, retry_ceiling=3)

        with pytest.raises(UploadFailed) as exc_info:
            await client.upload(b"payload", self.owner)

        assert store.writes == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, TransportError)
        assert store.blobs == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        ConnectionResetError("reset"),
        OSError("network unreachable"),
    ])
    async def test_transient_errors_are_retried(self, error):
        store = FlakyStore(failures=1, error=error)
        client = BlobStorageClient(store, retry_ceiling=3)

        blob_id = await client.upload(b"payload", self.owner)

        assert store.writes == 2
        assert store.blobs[blob_id] == b"payload"

    @pytest.mark.asyncio
    async def test_exhausted_ceiling_keeps_last_error(self):
        store = FlakyStore(failures=10, error=ConnectionResetError("reset"))
        client = BlobStorageClient(store, retry_ceiling=2)

        with pytest.raises(UploadFailed) as exc_info:
            await client.upload(b"payload", self.owner)

        assert store.writes == 2
        assert isinstance(exc_info.value.last_error, ConnectionResetError)

    def test_ceiling_must_be_positive(self):
        with pytest.raises(ValueError):
            BlobStorageClient(MemoryBlobStore(), retry_ceiling=0)


class TestDownload:
    """Tests for downloads"""

    @pytest.mark.asyncio
    async def test_missing_blob_is_not_retried(self):
        store = FlakyStore(failures=0)
        client = BlobStorageClient(store)

        with pytest.raises(BlobNotFound):
            await client.download("missing")
        assert store.reads == 1

    @pytest.mark.asyncio
    async def test_download_returns_stored_bytes(self):
        store = FlakyStore(failures=0)
        client = BlobStorageClient(store)
        blob_id = await client.upload(b"payload", Identity.generate())

        assert await client.download(blob_id) == b"payload"

    @pytest.mark.asyncio
    async def test_same_content_same_id(self):
        client = BlobStorageClient(MemoryBlobStore())
        owner = Identity.generate()
        assert await client.upload(b"x", owner) == await client.upload(b"x", owner)


class TestStorageCost:
    """Tests for the cost estimate"""

    def test_small_blob_costs_one_unit(self):
        cost = estimate_storage_cost(1000, epochs=1, storage_price_per_unit=11_000, write_price_per_unit=20_000)
        assert cost.encoded_size == 69_000
        assert cost.total == 31_000

    def test_storage_scales_with_epochs(self):
        one = estimate_storage_cost(1000, 1, 11_000, 20_000)
        five = estimate_storage_cost(1000, 5, 11_000, 20_000)
        assert five.storage_cost == 5 * one.storage_cost
        assert five.write_cost == one.write_cost
