"""
Retrieval Proxy Service

Resolves stored objects for the proxy routes: existence check, content-type
negotiation, response headers and disk staging ahead of delivery. The HTTP
layer decides how misses and failures are rendered.
"""

from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from app.api.v1.metrics import proxy_staged_bytes
from app.core.config import settings
from app.core.logging_config import get_logger
from app.storage.content_types import (
    DEFAULT_CONTENT_TYPE,
    content_type_for,
    extension_of,
    is_generic,
)
from app.storage.protocol import ObjectStat, ObjectStore
from app.storage.staging import create_staging_file, discard_file, write_chunks

logger = get_logger(__name__)

CACHE_CONTROL = "public, max-age=31536000"


@dataclass(frozen=True)
class ResolvedObject:
    """An object known to exist, with its negotiated content type."""

    key: str
    size: int
    content_type: str
    stat: ObjectStat = field(repr=False)


def resolve_content_type(key: str, stat: Optional[ObjectStat] = None) -> str:
    """Pick the Content-Type to serve.

    Precedence:
    1. Content-Type recorded at write time, unless it is one of the generic
       values stores report when nothing was set
    2. ``content-type`` entry in user metadata
    3. Extension lookup table
    4. application/octet-stream
    """
    if stat is not None:
        if not is_generic(stat.content_type):
            return stat.content_type
        metadata_type = stat.metadata.get("content-type")
        if not is_generic(metadata_type):
            return metadata_type
    return content_type_for(key) or DEFAULT_CONTENT_TYPE


class RetrievalProxy:
    """
    Serves bucket objects back to HTTP clients.

    Every staged delivery gets its own temp file; the response that sends it
    is responsible for deleting it (see ``StagedFileResponse``).
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        staging_dir: Optional[Union[str, Path]] = None,
        placeholder_path: Optional[Union[str, Path]] = None,
    ):
        self.store = store
        self.bucket = bucket
        self.staging_dir = staging_dir
        self.placeholder_path = Path(placeholder_path) if placeholder_path else None

    async def resolve(self, key: str) -> ResolvedObject:
        """
        Stat the object and negotiate its content type.

        Raises:
            ObjectNotFound: Key absent from the bucket
        """
        stat = await self.store.stat_object(self.bucket, key)
        resolved = ResolvedObject(
            key=key,
            size=stat.size,
            content_type=resolve_content_type(key, stat),
            stat=stat,
        )
        logger.debug(
            "proxy_object_resolved",
            key=key,
            size=resolved.size,
            content_type=resolved.content_type,
        )
        return resolved

    @staticmethod
    def response_headers(resolved: ResolvedObject) -> Dict[str, str]:
        return {
            "Content-Type": resolved.content_type,
            "Cache-Control": CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, HEAD",
        }

    async def stage(self, key: str) -> Path:
        """
        Copy the whole object into a fresh temp file.

        Delivery only starts once the local copy is complete, so a stalled
        store connection never produces a truncated response. On failure the
        temp file is removed before the error propagates.

        Returns:
            Path: Staged file; the caller owns its removal
        """
        path = create_staging_file(self.staging_dir, prefix="proxy", suffix=extension_of(key))
        try:
            async with aclosing(self.store.get_object(self.bucket, key)) as chunks:
                bytes_written = await write_chunks(path, chunks)
        except BaseException:
            await discard_file(path)
            raise

        proxy_staged_bytes.labels(service=settings.SERVICE_NAME).observe(bytes_written)
        logger.debug("proxy_object_staged", key=key, path=str(path), bytes_written=bytes_written)
        return path

    def placeholder(self) -> Optional[Path]:
        """Static asset served on unexpected errors, when present on disk."""
        if self.placeholder_path is not None and self.placeholder_path.is_file():
            return self.placeholder_path
        return None
