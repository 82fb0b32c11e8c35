"""
Key/value blob storage for generated documents, diagrams and metadata mirrors.

Backends
--------
- MemoryBlobStore  : dict-backed, used by tests and ``BLOB_BACKEND=memory``
- LocalBlobStore   : files under ``BLOB_ROOT`` written with aiofiles
- S3BlobStore      : boto3 client, calls pushed to a worker thread

Every backend built by ``build_blob_store`` is wrapped in ``RetryingBlobStore``,
which retries transient failures with exponential backoff and surfaces
``StorageError`` once the attempts are exhausted. ``BlobNotFoundError`` is a
definitive answer and is never retried.

Usage
-----
    store = build_blob_store(settings)
    await store.put("labels/labels.json", b"{}", content_type="application/json")
    data = await store.get("labels/labels.json")
"""
from __future__ import annotations

import abc
import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

import aiofiles
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from casebook.config import Settings
from casebook.core.exceptions import BlobNotFoundError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class BlobStore(abc.ABC):
    """Asynchronous put/get/list/delete over string keys."""

    @abc.abstractmethod
    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        ...

    @abc.abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the blob bytes; raise ``BlobNotFoundError`` when absent."""

    @abc.abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Keys starting with ``prefix``, sorted."""

    @abc.abstractmethod
    async def delete(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the count removed."""

    async def exists(self, key: str) -> bool:
        try:
            await self.get(key)
            return True
        except BlobNotFoundError:
            return False


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        self._blobs[key] = bytes(data)
        if content_type:
            self.content_types[key] = content_type

    async def get(self, key: str) -> bytes:
        try:
            return self._blobs[key]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def list(self, prefix: str) -> List[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))

    async def delete(self, prefix: str) -> int:
        doomed = [k for k in self._blobs if k.startswith(prefix)]
        for key in doomed:
            del self._blobs[key]
            self.content_types.pop(key, None)
        return len(doomed)


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalBlobStore(BlobStore):
    """Blobs stored as plain files; key segments become directories."""

    def __init__(self, root: str) -> None:
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid blob key '{key}'", key=key)
        return self.root.joinpath(*parts)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as fh:
                await fh.write(data)
        except OSError as exc:
            raise StorageError(f"Failed to write blob '{key}': {exc}", key=key) from exc

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        try:
            async with aiofiles.open(path, "rb") as fh:
                return await fh.read()
        except OSError as exc:
            raise StorageError(f"Failed to read blob '{key}': {exc}", key=key) from exc

    async def list(self, prefix: str) -> List[str]:
        if not self.root.is_dir():
            return []
        keys = []
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for name in filenames:
                rel = Path(dirpath, name).relative_to(self.root).as_posix()
                if rel.startswith(prefix):
                    keys.append(rel)
        return sorted(keys)

    async def delete(self, prefix: str) -> int:
        keys = await self.list(prefix)
        for key in keys:
            try:
                self._path_for(key).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"Failed to delete blob '{key}': {exc}", key=key) from exc

        # Drop the folder itself when the prefix names one
        folder = prefix.rstrip("/")
        if folder and prefix.endswith("/"):
            path = self._path_for(folder)
            if path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
        return len(keys)


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------

class S3BlobStore(BlobStore):
    """
    boto3-backed store. boto3 is synchronous, so every call runs in
    ``asyncio.to_thread`` to keep the event loop free.
    """

    _MISSING_CODES = {"NoSuchKey", "404", "NotFound"}
    _DELETE_BATCH = 1000

    def __init__(
        self,
        bucket: str,
        region: str,
        server_side_encryption: Optional[str] = "AES256",
        client=None,
    ) -> None:
        self.bucket = bucket
        self.server_side_encryption = server_side_encryption or None
        self._client = client or boto3.client("s3", region_name=region)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        kwargs = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        if self.server_side_encryption:
            kwargs["ServerSideEncryption"] = self.server_side_encryption
        await self._call(key, self._client.put_object, **kwargs)

    async def get(self, key: str) -> bytes:
        def _read() -> bytes:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        return await self._call(key, _read)

    async def list(self, prefix: str) -> List[str]:
        def _list() -> List[str]:
            paginator = self._client.get_paginator("list_objects_v2")
            keys: List[str] = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return sorted(keys)

        return await self._call(prefix, _list)

    async def delete(self, prefix: str) -> int:
        keys = await self.list(prefix)
        for start in range(0, len(keys), self._DELETE_BATCH):
            batch = keys[start:start + self._DELETE_BATCH]
            await self._call(
                prefix,
                self._client.delete_objects,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)

    async def _call(self, key: str, func: Callable[..., T], *args, **kwargs) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in self._MISSING_CODES:
                raise BlobNotFoundError(key) from exc
            raise StorageError(f"S3 error for '{key}': {code or exc}", key=key) from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 error for '{key}': {exc}", key=key) from exc


# ---------------------------------------------------------------------------
# Retry wrapper
# ---------------------------------------------------------------------------

class RetryingBlobStore(BlobStore):
    """
    Bounded-retry decorator around another store.

    * ``max_retries`` attempts in total per operation
    * sleeps ``base_delay * 2 ** (attempt - 1)`` between attempts
    * ``BlobNotFoundError`` propagates immediately
    """

    def __init__(self, inner: BlobStore, max_retries: int = 3, base_delay: float = 0.1) -> None:
        self.inner = inner
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        await self._with_retry("put", key, lambda: self.inner.put(key, data, content_type))

    async def get(self, key: str) -> bytes:
        return await self._with_retry("get", key, lambda: self.inner.get(key))

    async def list(self, prefix: str) -> List[str]:
        return await self._with_retry("list", prefix, lambda: self.inner.list(prefix))

    async def delete(self, prefix: str) -> int:
        return await self._with_retry("delete", prefix, lambda: self.inner.delete(prefix))

    async def _with_retry(self, op: str, key: str, call: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await call()
            except BlobNotFoundError:
                raise
            except (StorageError, OSError) as exc:
                last_error = exc
                logger.warning(
                    "Blob %s failed for '%s' (attempt %d/%d): %s",
                    op,
                    key,
                    attempt,
                    self.max_retries,
                    exc,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.base_delay * 2 ** (attempt - 1))

        logger.error("All %d blob %s attempts failed for '%s'", self.max_retries, op, key)
        raise StorageError(
            f"Blob {op} failed for '{key}' after {self.max_retries} attempts: {last_error}",
            key=key,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_blob_store(config: Settings) -> BlobStore:
    """Create the configured backend wrapped in ``RetryingBlobStore``."""
    backend = config.BLOB_BACKEND.lower()
    if backend == "memory":
        inner: BlobStore = MemoryBlobStore()
    elif backend == "local":
        inner = LocalBlobStore(config.BLOB_ROOT)
    elif backend == "s3":
        inner = S3BlobStore(
            bucket=config.S3_BUCKET_NAME,
            region=config.AWS_REGION,
            server_side_encryption=config.S3_SERVER_SIDE_ENCRYPTION,
        )
    else:
        raise ValueError(f"Unknown BLOB_BACKEND '{config.BLOB_BACKEND}'")

    logger.info("Blob store backend: %s", backend)
    return RetryingBlobStore(
        inner,
        max_retries=config.STORAGE_MAX_RETRIES,
        base_delay=config.STORAGE_RETRY_BASE_DELAY,
    )
