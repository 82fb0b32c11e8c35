"""Tests for the blob store backends and the retry wrapper."""
import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from casebook.core.exceptions import BlobNotFoundError, StorageError
from casebook.services.blob_store import (
    BlobStore,
    LocalBlobStore,
    MemoryBlobStore,
    RetryingBlobStore,
    S3BlobStore,
)


class FlakyStore(MemoryBlobStore):
    """Fails the first ``failures`` calls of every operation with StorageError."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.calls = 0

    async def get(self, key: str) -> bytes:
        self.calls += 1
        if self.calls <= self.failures:
            raise StorageError("transient", key=key)
        return await super().get(key)


# ---------------------------------------------------------------------------
# Memory / local
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_memory_store_roundtrip_and_prefix_delete():
    store = MemoryBlobStore()
    await store.put("case-studies/a/one.docx", b"1", content_type="application/x")
    await store.put("case-studies/a/two.docx", b"2")
    await store.put("case-studies/b/one.docx", b"3")

    assert await store.get("case-studies/a/one.docx") == b"1"
    assert await store.list("case-studies/a/") == [
        "case-studies/a/one.docx",
        "case-studies/a/two.docx",
    ]
    assert await store.delete("case-studies/a/") == 2
    assert await store.list("case-studies/") == ["case-studies/b/one.docx"]
    assert not await store.exists("case-studies/a/one.docx")


@pytest.mark.asyncio
async def test_memory_store_missing_key():
    with pytest.raises(BlobNotFoundError):
        await MemoryBlobStore().get("nope")


@pytest.mark.asyncio
async def test_local_store(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    await store.put("reviews/cs/comments.json", b"[]")
    await store.put("reviews/cs/other.json", b"{}")

    assert (tmp_path / "reviews" / "cs" / "comments.json").read_bytes() == b"[]"
    assert await store.get("reviews/cs/comments.json") == b"[]"
    assert await store.list("reviews/") == ["reviews/cs/comments.json", "reviews/cs/other.json"]

    assert await store.delete("reviews/cs/") == 2
    assert not (tmp_path / "reviews" / "cs").exists()

    with pytest.raises(BlobNotFoundError):
        await store.get("reviews/cs/comments.json")


@pytest.mark.asyncio
async def test_local_store_rejects_traversal(tmp_path):
    store = LocalBlobStore(str(tmp_path / "root"))
    with pytest.raises(StorageError):
        await store.put("../escape.txt", b"x")


# ---------------------------------------------------------------------------
# S3 (botocore Stubber)
# ---------------------------------------------------------------------------

@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.mark.asyncio
async def test_s3_store_get(s3_client):
    store = S3BlobStore("bucket", "us-east-1", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(b"hello"), 5)},
            {"Bucket": "bucket", "Key": "a.txt"},
        )
        assert await store.get("a.txt") == b"hello"


@pytest.mark.asyncio
async def test_s3_store_put_uses_encryption(s3_client):
    store = S3BlobStore("bucket", "us-east-1", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "bucket",
                "Key": "a.txt",
                "Body": b"x",
                "ContentType": "text/plain",
                "ServerSideEncryption": "AES256",
            },
        )
        await store.put("a.txt", b"x", content_type="text/plain")
        stubber.assert_no_pending_responses()


@pytest.mark.asyncio
async def test_s3_store_error_mapping(s3_client):
    store = S3BlobStore("bucket", "us-east-1", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        stubber.add_client_error("get_object", service_error_code="SlowDown", http_status_code=503)

        with pytest.raises(BlobNotFoundError):
            await store.get("missing")
        with pytest.raises(StorageError):
            await store.get("busy")


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failures():
    inner = FlakyStore(failures=2)
    await MemoryBlobStore.put(inner, "k", b"v")
    store = RetryingBlobStore(inner, max_retries=3, base_delay=0)

    assert await store.get("k") == b"v"
    assert inner.calls == 3


@pytest.mark.asyncio
async def test_retry_gives_up_with_storage_error():
    inner = FlakyStore(failures=10)
    store = RetryingBlobStore(inner, max_retries=3, base_delay=0)

    with pytest.raises(StorageError, match="after 3 attempts"):
        await store.get("k")
    assert inner.calls == 3


@pytest.mark.asyncio
async def test_retry_does_not_retry_missing_keys():
    inner = FlakyStore(failures=0)
    store: BlobStore = RetryingBlobStore(inner, max_retries=5, base_delay=0)

    with pytest.raises(BlobNotFoundError):
        await store.get("absent")
    assert inner.calls == 1
