"""Object store protocol definition."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Union, BinaryIO


Payload = Union[bytes, bytearray, memoryview, BinaryIO]


@dataclass(frozen=True)
class ObjectStat:
    """Store-side description of one object."""

    key: str
    size: int
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class ObjectInfo:
    """Entry yielded by ``list_objects``. Prefix entries have no size."""

    key: str
    size: int = 0
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    is_prefix: bool = False


class ObjectStore(Protocol):
    """Protocol defining the primitive operations of an S3-compatible store.

    The production implementation is ``StorageClient``; tests provide an
    in-memory double. Every operation is asynchronous and may fail with
    network, authentication or not-found errors.
    """

    chunk_size: int

    def with_chunk_size(self, chunk_size: int) -> "ObjectStore":
        """Return a sibling store that uploads with a different part size."""
        ...

    async def put_object(
        self,
        bucket: str,
        key: str,
        payload: Payload,
        size_hint: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        """Write ``payload`` under ``key``.

        Args:
            bucket: Bucket name
            key: Object key
            payload: Bytes or a readable binary stream
            size_hint: Total payload size when known
            metadata: ``content-type`` plus user metadata such as ``original-filename``
        """
        ...

    def get_object(self, bucket: str, key: str) -> AsyncIterator[bytes]:
        """Stream the object's bytes in chunks."""
        ...

    async def stat_object(self, bucket: str, key: str) -> ObjectStat:
        """Describe an object. Raises ObjectNotFound when absent."""
        ...

    async def remove_object(self, bucket: str, key: str) -> None:
        """Delete an object. Succeeds when the key is already absent."""
        ...

    async def bucket_exists(self, bucket: str) -> bool:
        ...

    async def make_bucket(self, bucket: str, region: Optional[str] = None) -> None:
        ...

    async def get_bucket_policy(self, bucket: str) -> Optional[str]:
        ...

    async def set_bucket_policy(self, bucket: str, policy: Union[str, Dict[str, Any]]) -> None:
        ...

    async def presigned_get_url(self, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        ...

    def list_objects(
        self, bucket: str, prefix: str = "", recursive: bool = True
    ) -> AsyncIterator[ObjectInfo]:
        ...

    async def list_buckets(self) -> list:
        ...
