"""Object storage layer: S3-compatible client, upload engine and bucket lifecycle."""

from .client import StorageClient
from .lifecycle import BucketLifecycleManager, LifecycleState
from .protocol import ObjectInfo, ObjectStat, ObjectStore
from .retry import RetryPolicy
from .sources import BufferSource, PathSource, PayloadSource, StreamSource
from .uploader import UploadEngine


__all__ = [
    "StorageClient",
    "ObjectStore",
    "ObjectStat",
    "ObjectInfo",
    "RetryPolicy",
    "UploadEngine",
    "BucketLifecycleManager",
    "LifecycleState",
    "StreamSource",
    "BufferSource",
    "PathSource",
    "PayloadSource",
]
