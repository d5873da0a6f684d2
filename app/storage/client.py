"""S3-compatible object store client."""

import copy
import json
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import aioboto3
from aiobotocore.config import AioConfig
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
)

from app.core.errors import ConnectivityError, ObjectNotFound, PolicyError, StorageError
from app.core.logging_config import get_logger
from app.storage.protocol import ObjectInfo, ObjectStat, Payload
from app.storage.retry import MIB


logger = get_logger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})
AUTH_FAILURE_CODES = frozenset({"AccessDenied", "InvalidAccessKeyId", "403"})
CONNECTION_ERRORS = (EndpointConnectionError, ConnectTimeoutError, NoCredentialsError)

READ_CHUNK_SIZE = 64 * 1024
MAX_PRESIGNED_TTL = 604800  # 7 days


def error_code(exc: BaseException) -> Optional[str]:
    """S3 error code of a ClientError, None for anything else."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class StorageClient:
    """S3-compatible object store client built on aioboto3.

    One instance is constructed at process start from the connection profile
    and injected into the components that need it. ``start()`` opens a
    long-lived aioboto3 client and ``close()`` releases it; before ``start()``
    each operation opens a short-lived client of its own.

    ``with_chunk_size()`` returns a sibling sharing the same connection but
    uploading with a different multipart part size, which is how the upload
    engine varies part sizes between attempts.
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        path_style: bool = True,
        chunk_size: int = 10 * MIB,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ):
        """Initialize the client.

        Args:
            endpoint_url: Store endpoint (e.g., "http://minio:9000"); None for AWS S3
            access_key: Access key id
            secret_key: Secret access key
            region: Region used for signing and bucket creation
            path_style: Address buckets as ``host/bucket/key`` instead of ``bucket.host/key``
            chunk_size: Multipart part size in bytes
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self.endpoint_url = endpoint_url
        self.region = region
        self.path_style = path_style
        self.chunk_size = chunk_size
        self.session = aioboto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        self.config = AioConfig(
            region_name=region,
            signature_version="s3v4",
            s3={"addressing_style": "path" if path_style else "auto"},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        self._exit_stack: Optional[AsyncExitStack] = None
        self._s3 = None

        logger.info(
            "storage_client_initialized",
            endpoint_url=self.endpoint_url,
            region=self.region,
            path_style=self.path_style,
            chunk_size=self.chunk_size,
        )

    @classmethod
    def from_settings(cls, settings) -> "StorageClient":
        return cls(
            endpoint_url=settings.endpoint_url,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            region=settings.MINIO_REGION,
            path_style=settings.MINIO_PATH_STYLE,
            chunk_size=settings.STORAGE_CHUNK_SIZE_MB * MIB,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the long-lived client used by every operation."""
        if self._s3 is not None:
            return
        stack = AsyncExitStack()
        self._s3 = await stack.enter_async_context(self._new_client())
        self._exit_stack = stack
        logger.debug("storage_client_started", endpoint_url=self.endpoint_url)

    async def close(self) -> None:
        if self._exit_stack is None:
            return
        stack, self._exit_stack, self._s3 = self._exit_stack, None, None
        await stack.aclose()
        logger.debug("storage_client_closed", endpoint_url=self.endpoint_url)

    def with_chunk_size(self, chunk_size: int) -> "StorageClient":
        sibling = copy.copy(self)
        sibling.chunk_size = chunk_size
        # Lifecycle stays with the original instance
        sibling._exit_stack = None
        return sibling

    def _new_client(self):
        return self.session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region,
            config=self.config,
        )

    @asynccontextmanager
    async def _client(self):
        if self._s3 is not None:
            yield self._s3
        else:
            async with self._new_client() as s3:
                yield s3

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------

    def _translate_error(
        self,
        exc: Exception,
        operation: str,
        bucket: str,
        key: Optional[str] = None,
    ) -> StorageError:
        """Map botocore failures onto the storage error taxonomy.

        Args:
            exc: Original exception
            operation: Operation being performed (e.g., 'put_object')
            bucket: Bucket name
            key: Object key, when the operation targets one

        Returns:
            StorageError: Subclass matching the failure, with context in the message
        """
        error_context = {
            "operation": operation,
            "bucket": bucket,
            "key": key,
            "endpoint_url": self.endpoint_url,
        }

        if isinstance(exc, StorageError):
            return exc

        if isinstance(exc, ClientError):
            code = error_code(exc) or "Unknown"
            message = exc.response.get("Error", {}).get("Message", str(exc))
            error_context.update({
                "error_code": code,
                "http_status": exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode"),
            })

            if code in NOT_FOUND_CODES:
                target = f"{bucket}/{key}" if key else bucket
                return ObjectNotFound(f"Not found in object store: {target}", key=key)
            if code in AUTH_FAILURE_CODES:
                return ConnectivityError(
                    f"Access denied by object store ({code}). "
                    f"Check credentials and bucket permissions. Context: {error_context}",
                    key=key,
                )
            return StorageError(
                f"{operation} failed: {code}: {message}. Context: {error_context}", key=key
            )

        if isinstance(exc, CONNECTION_ERRORS):
            return ConnectivityError(
                f"Object store unreachable: {exc}. Context: {error_context}", key=key
            )

        if isinstance(exc, BotoCoreError):
            error_context["botocore_error"] = type(exc).__name__

        return StorageError(f"{operation} failed: {exc}. Context: {error_context}", key=key)

    # ------------------------------------------------------------------
    # Object operations
    # ------------------------------------------------------------------

    @staticmethod
    def _split_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, Any]:
        """Turn a flat metadata map into put/upload ExtraArgs."""
        extra: Dict[str, Any] = {}
        user_metadata: Dict[str, str] = {}
        for name, value in (metadata or {}).items():
            if value is None:
                continue
            if name.lower() == "content-type":
                extra["ContentType"] = str(value)
            else:
                user_metadata[name.lower()] = str(value)
        if user_metadata:
            extra["Metadata"] = user_metadata
        return extra

    async def put_object(
        self,
        bucket: str,
        key: str,
        payload: Payload,
        size_hint: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        """Upload bytes or a binary stream.

        Byte payloads go through a single PutObject call. Streams go through
        the managed transfer, which switches to multipart uploads with
        ``self.chunk_size`` parts once the payload exceeds one part.
        """
        extra_args = self._split_metadata(metadata)

        logger.debug(
            "storage_put_started",
            bucket=bucket,
            key=key,
            size_hint=size_hint,
            chunk_size=self.chunk_size,
            streamed=not isinstance(payload, (bytes, bytearray, memoryview)),
        )

        try:
            async with self._client() as s3:
                if isinstance(payload, (bytes, bytearray, memoryview)):
                    params = {"Bucket": bucket, "Key": key, "Body": bytes(payload), **extra_args}
                    if size_hint is not None:
                        params["ContentLength"] = size_hint
                    await s3.put_object(**params)
                else:
                    transfer_config = TransferConfig(
                        multipart_threshold=self.chunk_size,
                        multipart_chunksize=self.chunk_size,
                    )
                    await s3.upload_fileobj(
                        payload,
                        bucket,
                        key,
                        ExtraArgs=extra_args or None,
                        Config=transfer_config,
                    )
        except Exception as exc:
            logger.warning(
                "storage_put_failed",
                bucket=bucket,
                key=key,
                chunk_size=self.chunk_size,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise self._translate_error(exc, "put_object", bucket, key) from exc

        logger.info(
            "storage_put_success",
            bucket=bucket,
            key=key,
            size_hint=size_hint,
            chunk_size=self.chunk_size,
        )

    async def get_object(self, bucket: str, key: str) -> AsyncIterator[bytes]:
        """Stream an object in chunks.

        The underlying connection stays open until the iterator is exhausted
        or closed.
        """
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=bucket, Key=key)
                body = response["Body"]
                try:
                    while True:
                        chunk = await body.read(READ_CHUNK_SIZE)
                        if not chunk:
                            break
                        yield chunk
                finally:
                    body.close()
        except (ClientError, BotoCoreError) as exc:
            logger.warning(
                "storage_get_failed",
                bucket=bucket,
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise self._translate_error(exc, "get_object", bucket, key) from exc

    async def stat_object(self, bucket: str, key: str) -> ObjectStat:
        try:
            async with self._client() as s3:
                response = await s3.head_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise self._translate_error(exc, "stat_object", bucket, key) from exc

        return ObjectStat(
            key=key,
            size=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType"),
            metadata={k.lower(): v for k, v in (response.get("Metadata") or {}).items()},
            etag=(response.get("ETag") or "").strip('"') or None,
            last_modified=response.get("LastModified"),
        )

    async def remove_object(self, bucket: str, key: str) -> None:
        """Delete an object.

        Note:
            S3 deletes are idempotent; a missing key is also tolerated here
            for stores that report NoSuchKey instead.
        """
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=bucket, Key=key)
        except Exception as exc:
            if error_code(exc) in ("NoSuchKey", "404", "NotFound"):
                logger.debug("storage_remove_already_absent", bucket=bucket, key=key)
                return
            logger.warning(
                "storage_remove_failed",
                bucket=bucket,
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise self._translate_error(exc, "remove_object", bucket, key) from exc

        logger.info("storage_remove_success", bucket=bucket, key=key)

    async def presigned_get_url(self, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        """Generate a time-limited GET URL.

        Raises:
            ValueError: If ttl_seconds is outside 1 second to 7 days
        """
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1 second")
        if ttl_seconds > MAX_PRESIGNED_TTL:
            raise ValueError(f"ttl_seconds cannot exceed {MAX_PRESIGNED_TTL} seconds (7 days)")

        try:
            async with self._client() as s3:
                url = await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": bucket, "Key": key},
                    ExpiresIn=ttl_seconds,
                )
        except Exception as exc:
            raise self._translate_error(exc, "presigned_get_url", bucket, key) from exc

        logger.debug("storage_presigned_url_generated", bucket=bucket, key=key, ttl_seconds=ttl_seconds)
        return url

    async def list_objects(
        self, bucket: str, prefix: str = "", recursive: bool = True
    ) -> AsyncIterator[ObjectInfo]:
        """Lazily list objects under ``prefix``.

        Non-recursive listings stop at the next ``/`` and yield the common
        prefixes as ``is_prefix`` entries.
        """
        params: Dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if not recursive:
            params["Delimiter"] = "/"

        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(**params):
                    for entry in page.get("CommonPrefixes", []) or []:
                        yield ObjectInfo(key=entry["Prefix"], is_prefix=True)
                    for entry in page.get("Contents", []) or []:
                        yield ObjectInfo(
                            key=entry["Key"],
                            size=int(entry.get("Size", 0)),
                            etag=(entry.get("ETag") or "").strip('"') or None,
                            last_modified=entry.get("LastModified"),
                        )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, "list_objects", bucket, prefix) from exc

    # ------------------------------------------------------------------
    # Bucket operations
    # ------------------------------------------------------------------

    async def list_buckets(self) -> List[str]:
        try:
            async with self._client() as s3:
                response = await s3.list_buckets()
        except Exception as exc:
            raise self._translate_error(exc, "list_buckets", "*") from exc
        return [entry["Name"] for entry in response.get("Buckets", [])]

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            async with self._client() as s3:
                await s3.head_bucket(Bucket=bucket)
        except Exception as exc:
            if error_code(exc) in NOT_FOUND_CODES:
                return False
            raise self._translate_error(exc, "bucket_exists", bucket) from exc
        return True

    async def make_bucket(self, bucket: str, region: Optional[str] = None) -> None:
        region = region or self.region
        params: Dict[str, Any] = {"Bucket": bucket}
        # us-east-1 is the implicit default and must not be sent as a constraint
        if region and region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            async with self._client() as s3:
                await s3.create_bucket(**params)
        except Exception as exc:
            if error_code(exc) in ("BucketAlreadyOwnedByYou",):
                logger.debug("storage_bucket_already_owned", bucket=bucket)
                return
            raise self._translate_error(exc, "make_bucket", bucket) from exc

        logger.info("storage_bucket_created", bucket=bucket, region=region)

    async def get_bucket_policy(self, bucket: str) -> Optional[str]:
        """Current policy document, None when the bucket has none."""
        try:
            async with self._client() as s3:
                response = await s3.get_bucket_policy(Bucket=bucket)
        except Exception as exc:
            if error_code(exc) == "NoSuchBucketPolicy":
                return None
            raise self._translate_error(exc, "get_bucket_policy", bucket) from exc
        return response.get("Policy")

    async def set_bucket_policy(self, bucket: str, policy: Union[str, Dict[str, Any]]) -> None:
        document = policy if isinstance(policy, str) else json.dumps(policy)
        try:
            async with self._client() as s3:
                await s3.put_bucket_policy(Bucket=bucket, Policy=document)
        except Exception as exc:
            translated = self._translate_error(exc, "set_bucket_policy", bucket)
            raise PolicyError(translated.message) from exc

        logger.info("storage_bucket_policy_applied", bucket=bucket)
