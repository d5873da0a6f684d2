"""
StorageClient tests.

The aioboto3 client is replaced by an AsyncMock installed as the long-lived
connection, so these run without a store.
"""

import io
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.core.errors import ConnectivityError, ObjectNotFound, PolicyError, StorageError
from app.storage.client import StorageClient
from app.storage.retry import MIB


def client_error(code: str, operation: str = "HeadObject", status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} message"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


@pytest.fixture
def s3() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def storage(s3) -> StorageClient:
    client = StorageClient("http://minio:9000", "access", "secret", chunk_size=10 * MIB)
    client._s3 = s3
    return client


# ============================================================================
# Error translation
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("exc,expected", [
    (client_error("NoSuchKey", status=404), ObjectNotFound),
    (client_error("404", status=404), ObjectNotFound),
    (client_error("AccessDenied", status=403), ConnectivityError),
    (client_error("InvalidAccessKeyId", status=403), ConnectivityError),
    (EndpointConnectionError(endpoint_url="http://minio:9000"), ConnectivityError),
    (client_error("SlowDown", status=503), StorageError),
    (RuntimeError("boom"), StorageError),
])
def test_translate_error(storage, exc, expected):
    translated = storage._translate_error(exc, "stat_object", "luz-ia", "a/b.png")

    assert type(translated) is expected
    assert translated.key == "a/b.png"


@pytest.mark.unit
def test_translate_keeps_storage_errors(storage):
    original = ObjectNotFound("gone", key="k")
    assert storage._translate_error(original, "get_object", "luz-ia", "k") is original


@pytest.mark.unit
def test_split_metadata():
    extra = StorageClient._split_metadata({
        "Content-Type": "audio/mpeg",
        "Original-Filename": "a%20b.mp3",
        "skipped": None,
    })

    assert extra == {"ContentType": "audio/mpeg", "Metadata": {"original-filename": "a%20b.mp3"}}


# ============================================================================
# Object operations
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_bytes_sends_content_length(storage, s3):
    await storage.put_object("luz-ia", "a.png", b"abc", size_hint=3, metadata={"content-type": "image/png"})

    s3.put_object.assert_awaited_once_with(
        Bucket="luz-ia", Key="a.png", Body=b"abc", ContentType="image/png", ContentLength=3
    )
    s3.upload_fileobj.assert_not_called()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_stream_uses_chunk_size_of_sibling(storage, s3):
    sibling = storage.with_chunk_size(5 * MIB)
    stream = io.BytesIO(b"x" * 100)

    await sibling.put_object("luz-ia", "a.bin", stream, size_hint=100)

    args, kwargs = s3.upload_fileobj.call_args
    assert args == (stream, "luz-ia", "a.bin")
    assert kwargs["Config"].multipart_chunksize == 5 * MIB
    assert kwargs["Config"].multipart_threshold == 5 * MIB
    assert storage.chunk_size == 10 * MIB
    assert sibling.session is storage.session


@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_failure_translated_and_chained(storage, s3):
    original = client_error("AccessDenied", "PutObject", 403)
    s3.put_object.side_effect = original

    with pytest.raises(ConnectivityError) as exc_info:
        await storage.put_object("luz-ia", "a.png", b"abc")

    assert exc_info.value.__cause__ is original


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stat_object(storage, s3):
    s3.head_object.return_value = {
        "ContentLength": 42,
        "ContentType": "audio/mpeg",
        "Metadata": {"Original-Filename": "a.mp3"},
        "ETag": '"abc123"',
    }

    stat = await storage.stat_object("luz-ia", "praticas/a.mp3")

    assert stat.size == 42
    assert stat.content_type == "audio/mpeg"
    assert stat.metadata == {"original-filename": "a.mp3"}
    assert stat.etag == "abc123"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stat_missing_raises_not_found(storage, s3):
    s3.head_object.side_effect = client_error("404", status=404)

    with pytest.raises(ObjectNotFound):
        await storage.stat_object("luz-ia", "missing.png")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_object_streams_chunks(storage, s3):
    body = MagicMock()
    body.read = AsyncMock(side_effect=[b"ab", b"cd", b""])
    s3.get_object.return_value = {"Body": body}

    chunks = [chunk async for chunk in storage.get_object("luz-ia", "a.bin")]

    assert chunks == [b"ab", b"cd"]
    body.close.assert_called_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remove_tolerates_missing_key(storage, s3):
    s3.delete_object.side_effect = client_error("NoSuchKey", "DeleteObject", 404)

    await storage.remove_object("luz-ia", "gone.png")


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("ttl", [0, -1, 604801])
async def test_presign_rejects_ttl_out_of_range(storage, s3, ttl):
    with pytest.raises(ValueError):
        await storage.presigned_get_url("luz-ia", "a.png", ttl)

    s3.generate_presigned_url.assert_not_called()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_presign_passes_expiry(storage, s3):
    s3.generate_presigned_url.return_value = "http://minio:9000/luz-ia/a.png?X-Amz-Expires=60"

    url = await storage.presigned_get_url("luz-ia", "a.png", 60)

    assert url.endswith("X-Amz-Expires=60")
    assert s3.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 60


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_objects_across_pages(storage, s3):
    async def pages(**params):
        yield {"Contents": [{"Key": "perfil/a.png", "Size": 1}]}
        yield {"CommonPrefixes": [{"Prefix": "perfil/sub/"}], "Contents": [{"Key": "perfil/b.png", "Size": 2}]}

    paginator = MagicMock()
    paginator.paginate = pages
    s3.get_paginator = MagicMock(return_value=paginator)

    entries = [info async for info in storage.list_objects("luz-ia", "perfil/")]

    assert [(e.key, e.is_prefix) for e in entries] == [
        ("perfil/a.png", False),
        ("perfil/sub/", True),
        ("perfil/b.png", False),
    ]


# ============================================================================
# Bucket operations
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_bucket_exists(storage, s3):
    assert await storage.bucket_exists("luz-ia") is True

    s3.head_bucket.side_effect = client_error("404", "HeadBucket", 404)
    assert await storage.bucket_exists("luz-ia") is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_make_bucket_region_constraint(storage, s3):
    await storage.make_bucket("luz-ia")
    assert s3.create_bucket.call_args.kwargs == {"Bucket": "luz-ia"}

    await storage.make_bucket("luz-ia", region="sa-east-1")
    assert s3.create_bucket.call_args.kwargs["CreateBucketConfiguration"] == {"LocationConstraint": "sa-east-1"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_policy_is_none(storage, s3):
    s3.get_bucket_policy.side_effect = client_error("NoSuchBucketPolicy", "GetBucketPolicy", 404)

    assert await storage.get_bucket_policy("luz-ia") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_set_policy_serializes_and_wraps_failures(storage, s3):
    policy = {"Version": "2012-10-17", "Statement": []}
    await storage.set_bucket_policy("luz-ia", policy)
    assert json.loads(s3.put_bucket_policy.call_args.kwargs["Policy"]) == policy

    s3.put_bucket_policy.side_effect = client_error("MalformedPolicy", "PutBucketPolicy")
    with pytest.raises(PolicyError):
        await storage.set_bucket_policy("luz-ia", policy)

