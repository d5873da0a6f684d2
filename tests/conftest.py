"""
Pytest configuration and shared fixtures for media storage tests.

This module provides:
- FakeObjectStore: in-memory S3-compatible store with failure injection
- Application fixtures wired to the fake store through create_app()
- Test clients (sync and async)
- Payload helpers
"""

import copy
import os
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional, Tuple

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.core.config import settings
from app.core.errors import ConnectivityError, ObjectNotFound
from app.main import create_app
from app.storage.protocol import ObjectInfo, ObjectStat
from app.storage.retry import MIB


BUCKET = settings.MINIO_BUCKET_NAME

# Called with (attempt_number, chunk_size) for every put; returns the error to raise or None
PutFailure = Callable[[int, int], Optional[Exception]]


# ============================================================================
# In-memory object store
# ============================================================================

class FakeObjectStore:
    """In-memory stand-in for StorageClient.

    Siblings returned by ``with_chunk_size()`` share every dict and list, so
    tests can inspect all calls from the original instance.

    Failure injection:
        put_failure: callable deciding per put call whether it fails
        partial_read: bytes read from a stream before an injected failure
        fail_get_after: bytes yielded by get_object before it raises
        fail_remove / fail_stat / fail_list_buckets / fail_policy: exceptions to raise
    """

    def __init__(self, chunk_size: int = 10 * MIB):
        self.chunk_size = chunk_size
        self.objects: Dict[Tuple[str, str], Dict] = {}
        self.buckets = set()
        self.policies: Dict[str, str] = {}
        self.put_calls: List[Dict] = []
        self.removed: List[str] = []
        self.put_failure: Optional[PutFailure] = None
        self.partial_read = 0
        self.fail_get_after: Optional[int] = None
        self.fail_remove: Optional[Exception] = None
        self.fail_stat: Optional[Exception] = None
        self.fail_list_buckets: Optional[Exception] = None
        self.fail_policy: Optional[Exception] = None

    def with_chunk_size(self, chunk_size: int) -> "FakeObjectStore":
        sibling = copy.copy(self)
        sibling.chunk_size = chunk_size
        return sibling

    # Test helpers

    def add(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        bucket: str = BUCKET,
    ) -> None:
        self.buckets.add(bucket)
        self.objects[(bucket, key)] = {
            "data": data,
            "content_type": content_type,
            "metadata": dict(metadata or {}),
        }

    def data(self, key: str, bucket: str = BUCKET) -> bytes:
        return self.objects[(bucket, key)]["data"]

    def chunk_sizes_tried(self) -> List[int]:
        return [call["chunk_size"] for call in self.put_calls]

    # ObjectStore protocol

    async def put_object(self, bucket, key, payload, size_hint=None, metadata=None):
        attempt = len(self.put_calls) + 1
        is_bytes = isinstance(payload, (bytes, bytearray, memoryview))
        call = {
            "key": key,
            "chunk_size": self.chunk_size,
            "size_hint": size_hint,
            "streamed": not is_bytes,
            "reader": None if is_bytes else payload,
            "start_offset": None if is_bytes else payload.tell(),
        }
        self.put_calls.append(call)

        error = self.put_failure(attempt, self.chunk_size) if self.put_failure else None
        if error is not None:
            if not is_bytes and self.partial_read:
                payload.read(self.partial_read)
            raise error

        data = bytes(payload) if is_bytes else payload.read()
        if size_hint is not None and len(data) != size_hint:
            raise RuntimeError(f"size mismatch: read {len(data)}, expected {size_hint}")

        metadata = {k.lower(): v for k, v in (metadata or {}).items()}
        content_type = metadata.pop("content-type", None)
        self.add(key, data, content_type=content_type, metadata=metadata, bucket=bucket)

    async def get_object(self, bucket, key):
        entry = self.objects.get((bucket, key))
        if entry is None:
            raise ObjectNotFound(f"Not found in object store: {bucket}/{key}", key=key)
        data = entry["data"]
        step = 4096
        for offset in range(0, max(len(data), 1), step):
            if self.fail_get_after is not None and offset >= self.fail_get_after:
                raise ConnectivityError("connection reset during read", key=key)
            yield data[offset:offset + step]

    async def stat_object(self, bucket, key):
        if self.fail_stat is not None:
            raise self.fail_stat
        entry = self.objects.get((bucket, key))
        if entry is None:
            raise ObjectNotFound(f"Not found in object store: {bucket}/{key}", key=key)
        return ObjectStat(
            key=key,
            size=len(entry["data"]),
            # MinIO reports this when no Content-Type was recorded
            content_type=entry["content_type"] or "binary/octet-stream",
            metadata=dict(entry["metadata"]),
        )

    async def remove_object(self, bucket, key):
        if self.fail_remove is not None:
            raise self.fail_remove
        self.objects.pop((bucket, key), None)
        self.removed.append(key)

    async def bucket_exists(self, bucket):
        return bucket in self.buckets

    async def make_bucket(self, bucket, region=None):
        self.buckets.add(bucket)

    async def get_bucket_policy(self, bucket):
        return self.policies.get(bucket)

    async def set_bucket_policy(self, bucket, policy):
        if self.fail_policy is not None:
            raise self.fail_policy
        self.policies[bucket] = policy

    async def presigned_get_url(self, bucket, key, ttl_seconds=3600):
        return f"http://fake-store/{bucket}/{key}?X-Amz-Expires={ttl_seconds}"

    async def list_objects(self, bucket, prefix="", recursive=True):
        for (entry_bucket, key), entry in sorted(self.objects.items()):
            if entry_bucket == bucket and key.startswith(prefix):
                yield ObjectInfo(key=key, size=len(entry["data"]))

    async def list_buckets(self):
        if self.fail_list_buckets is not None:
            raise self.fail_list_buckets
        return sorted(self.buckets)


# ============================================================================
# Store and environment fixtures
# ============================================================================

@pytest.fixture
def fake_store() -> FakeObjectStore:
    """Empty fake store with the configured bucket present."""
    store = FakeObjectStore()
    store.buckets.add(BUCKET)
    return store


@pytest.fixture
def staging_dir(tmp_path: Path, monkeypatch) -> Path:
    """Isolated staging directory, also applied to settings."""
    path = tmp_path / "staging"
    path.mkdir()
    monkeypatch.setattr(settings, "STAGING_DIR", str(path))
    return path


# ============================================================================
# API Client fixtures
# ============================================================================

@pytest.fixture
def app(fake_store: FakeObjectStore, staging_dir: Path) -> FastAPI:
    """Application wired to the fake store."""
    return create_app(storage_client=fake_store)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create a synchronous test client for the FastAPI app.

    Entering the client runs the lifespan, so the bucket lifecycle has
    already run against the fake store.

    Returns:
        TestClient: Synchronous test client
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an asynchronous test client for the FastAPI app.

    ASGITransport does not run lifespan events, so they are entered here.

    Yields:
        AsyncClient: Asynchronous test client
    """
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


# ============================================================================
# Test data fixtures
# ============================================================================

@pytest.fixture
def sample_mp3_bytes() -> bytes:
    """ID3 header followed by filler bytes."""
    return b"ID3\x03\x00\x00\x00\x00\x00\x0f" + os.urandom(2048)


def make_payload(size: int) -> bytes:
    """Random payload; random bytes make offset mistakes visible."""
    return os.urandom(size)


def staging_files(directory: Path) -> List[Path]:
    return [p for p in directory.iterdir() if p.is_file()]
