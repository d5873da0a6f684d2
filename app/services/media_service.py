"""
Media Service Layer - Outward Interface for Domain Collaborators

Domain handlers hand over (payload, folder, owner) and get back a key plus
the URL to persist in their records. They never talk to the store directly.

Consistency policy: a domain record and its blob are never updated in one
transaction. Replacements upload the new object first and only then remove
the old one; a failed removal leaves an orphan that is logged and later
collected by ``sweep_orphans``.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import quote

from app.api.v1.metrics import storage_operations_total
from app.core.config import settings
from app.core.logging_config import get_logger
from app.storage.content_types import content_type_for, is_generic
from app.storage.keys import generate_object_key, key_from_url, proxy_url
from app.storage.protocol import ObjectStore
from app.storage.sources import PayloadSource
from app.storage.uploader import UploadEngine

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredMedia:
    """What a collaborator keeps after a successful upload."""

    key: str
    url: str
    content_type: str
    size: int
    original_filename: Optional[str] = None


class MediaService:
    """
    Blob lifecycle for domain records.

    Responsibilities:
    - Generate keys and upload through the retrying engine
    - Replace media as upload-new then remove-old
    - Best-effort removal that never aborts the caller's workflow
    - Presigned URLs and orphan sweeping

    Does NOT know about:
    - HTTP status codes (raises storage errors, the API layer maps them)
    - Domain records (callers pass the keys they still reference)
    """

    def __init__(
        self,
        storage: ObjectStore,
        engine: UploadEngine,
        bucket: str,
        public_base_url: Optional[str] = None,
        self_test_prefix: str = "_test_/",
    ):
        self.storage = storage
        self.engine = engine
        self.bucket = bucket
        self.public_base_url = public_base_url
        self.self_test_prefix = self_test_prefix

    def url_for(self, key: str) -> str:
        return proxy_url(key, self.public_base_url)

    def key_for_url(self, url: str) -> Optional[str]:
        return key_from_url(url, self.public_base_url)

    async def store(
        self,
        source: PayloadSource,
        folder: str,
        owner_id: Optional[str] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredMedia:
        """
        Upload a payload under a freshly generated key.

        Args:
            source: Stream, buffer or path payload
            folder: Logical folder naming the purpose (e.g., "perfil")
            owner_id: Owning record id, becomes the second key segment
            filename: Original client filename; drives the extension
            content_type: Declared type; generic values fall back to the extension table

        Returns:
            StoredMedia with key and URL

        Raises:
            InvalidInput: Unusable payload or key segment
            UploadFailed: All attempts exhausted
        """
        key = generate_object_key(folder, owner_id, filename)
        resolved_type = content_type if not is_generic(content_type) else content_type_for(filename or key)

        metadata = {"content-type": resolved_type}
        if filename:
            # S3 user metadata must be ASCII
            metadata["original-filename"] = quote(filename)

        await self.engine.upload(self.bucket, key, source, metadata)

        stored = StoredMedia(
            key=key,
            url=self.url_for(key),
            content_type=resolved_type,
            size=source.size,
            original_filename=filename,
        )
        logger.info(
            "media_stored",
            key=key,
            folder=folder,
            owner_id=owner_id,
            content_type=resolved_type,
            size=stored.size,
        )
        return stored

    async def replace(
        self,
        old_key: Optional[str],
        source: PayloadSource,
        folder: str,
        owner_id: Optional[str] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredMedia:
        """Upload the new object, then best-effort remove ``old_key``.

        A failed upload leaves the old object untouched.
        """
        stored = await self.store(source, folder, owner_id, filename, content_type)
        if old_key and old_key != stored.key:
            await self.remove(old_key)
        return stored

    async def remove(self, key: Optional[str]) -> bool:
        """
        Best-effort removal. Never raises.

        Absent keys count as removed. Any other failure is logged as an
        orphan and reported as False so the caller can carry on.
        """
        if not key:
            return False

        try:
            await self.storage.remove_object(self.bucket, key)
        except Exception as e:
            storage_operations_total.labels(
                service=settings.SERVICE_NAME, operation="remove", status="failure"
            ).inc()
            logger.warning(
                "orphaned_object",
                bucket=self.bucket,
                key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        storage_operations_total.labels(
            service=settings.SERVICE_NAME, operation="remove", status="success"
        ).inc()
        logger.info("media_removed", key=key)
        return True

    async def presigned_url(self, key: str, ttl_seconds: int) -> str:
        """
        Time-limited direct URL for an existing object.

        Raises:
            ObjectNotFound: Key absent
            ValueError: TTL outside 1 second to 7 days
        """
        await self.storage.stat_object(self.bucket, key)
        url = await self.storage.presigned_get_url(self.bucket, key, ttl_seconds)
        storage_operations_total.labels(
            service=settings.SERVICE_NAME, operation="presign", status="success"
        ).inc()
        return url

    async def sweep_orphans(
        self,
        prefix: str,
        referenced_keys: Iterable[str],
        dry_run: bool = True,
    ) -> List[str]:
        """
        Find (and unless ``dry_run``, remove) objects no record references.

        Self-test objects are skipped. Returns the orphaned keys found.
        """
        referenced = set(referenced_keys)
        orphans: List[str] = []

        async for info in self.storage.list_objects(self.bucket, prefix, recursive=True):
            if info.is_prefix or info.key.startswith(self.self_test_prefix):
                continue
            if info.key in referenced:
                continue
            orphans.append(info.key)

        removed = 0
        if not dry_run:
            for key in orphans:
                if await self.remove(key):
                    removed += 1

        storage_operations_total.labels(
            service=settings.SERVICE_NAME, operation="sweep", status="success"
        ).inc()
        logger.info(
            "orphan_sweep_completed",
            prefix=prefix,
            referenced=len(referenced),
            orphans=len(orphans),
            removed=removed,
            dry_run=dry_run,
        )
        return orphans
