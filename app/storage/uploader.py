"""
Upload Strategy Engine

Persists a payload under a destination key despite transient store failures
(signature mismatches, part-size dependent multipart failures, dropped
connections).

Stream sources run the retry loop: attempt ``n`` uses the part size the
``RetryPolicy`` assigns to it, and the stream is rewound to byte 0 before
every retry. Buffer sources walk a shorter ladder first (direct put, put with
explicit size) and fall back to staging the bytes on disk and running the
stream loop over the staged file. Path sources are opened into reopenable
streams.
"""

import asyncio
import time
from pathlib import Path
from typing import Dict, Optional, Union

from app.api.v1.metrics import (
    storage_upload_attempts_total,
    storage_upload_duration_seconds,
    storage_uploads_total,
)
from app.core.config import settings
from app.core.errors import InvalidInput, StorageError, UploadFailed
from app.core.logging_config import get_logger
from app.storage.content_types import extension_of
from app.storage.protocol import ObjectStore
from app.storage.retry import MIB, RetryPolicy
from app.storage.sources import BufferSource, PathSource, PayloadSource, StreamSource
from app.storage.staging import staged_file, write_bytes


logger = get_logger(__name__)

# Direct put, then put with explicit size, before staging to disk
BUFFER_LADDER_STEPS = 2


def _source_kind(source: PayloadSource) -> str:
    if isinstance(source, BufferSource):
        return "buffer"
    if isinstance(source, PathSource):
        return "path"
    return "stream"


class UploadEngine:
    """Retrying uploader bound to one object store.

    Args:
        store: Object store the payloads are written to
        policy: Attempt budget and part-size rotation
        staging_dir: Directory for buffer staging files; system temp dir when None
    """

    def __init__(
        self,
        store: ObjectStore,
        policy: Optional[RetryPolicy] = None,
        staging_dir: Optional[Union[str, Path]] = None,
    ):
        self.store = store
        self.policy = policy or RetryPolicy()
        self.staging_dir = staging_dir

    async def upload(
        self,
        bucket: str,
        key: str,
        source: PayloadSource,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Persist ``source`` under ``key`` and return the key.

        Raises:
            InvalidInput: Payload unusable; raised before any network call
            UploadFailed: Every attempt failed; wraps the last error
        """
        if not isinstance(source, (StreamSource, BufferSource, PathSource)):
            raise InvalidInput(f"Unsupported payload source: {type(source).__name__}", key=key)
        source.validate()

        kind = _source_kind(source)
        start_time = time.time()

        logger.info(
            "upload_started",
            bucket=bucket,
            key=key,
            source=kind,
            size=source.size,
            max_attempts=self.policy.max_attempts,
        )

        try:
            if isinstance(source, BufferSource):
                await self._upload_buffer(bucket, key, source, metadata)
            elif isinstance(source, PathSource):
                stream = await asyncio.to_thread(source.open)
                await self._upload_stream(bucket, key, stream, metadata, owned=True)
            else:
                await self._upload_stream(bucket, key, source, metadata)
        except StorageError as exc:
            storage_uploads_total.labels(
                service=settings.SERVICE_NAME, source=kind, status="failure"
            ).inc()
            logger.error(
                "upload_failed",
                bucket=bucket,
                key=key,
                source=kind,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        duration = time.time() - start_time
        storage_uploads_total.labels(
            service=settings.SERVICE_NAME, source=kind, status="success"
        ).inc()
        storage_upload_duration_seconds.labels(
            service=settings.SERVICE_NAME, source=kind
        ).observe(duration)

        logger.info(
            "upload_completed",
            bucket=bucket,
            key=key,
            source=kind,
            duration_ms=round(duration * 1000, 2),
        )
        return key

    async def _upload_stream(
        self,
        bucket: str,
        key: str,
        source: StreamSource,
        metadata: Optional[Dict[str, str]],
        owned: bool = False,
    ) -> int:
        """Run the retry loop over a stream source.

        Returns the number of the attempt that succeeded. Streams opened
        here (reopened on retry, or handed over with ``owned``) are closed
        before returning.
        """
        current = source
        attempts = 0
        last_error: Optional[BaseException] = None

        try:
            for attempt in range(1, self.policy.max_attempts + 1):
                if attempt > 1:
                    if not current.rewindable:
                        logger.warning(
                            "upload_retry_impossible",
                            key=key,
                            attempt=attempt,
                            reason="stream cannot be rewound",
                        )
                        break
                    try:
                        # Reopening touches the filesystem
                        current = await asyncio.to_thread(current.rewind)
                    except (OSError, ValueError, InvalidInput) as exc:
                        logger.warning("upload_rewind_failed", key=key, attempt=attempt, error=str(exc))
                        last_error = exc
                        break

                    delay = self.policy.delay_before(attempt)
                    if delay > 0:
                        await asyncio.sleep(delay)

                chunk_size = self.policy.chunk_size_for(attempt)
                attempts = attempt
                client = self.store.with_chunk_size(chunk_size)

                logger.debug(
                    "upload_attempt_started",
                    key=key,
                    attempt=attempt,
                    chunk_size=chunk_size,
                    size=current.size,
                )

                try:
                    await client.put_object(
                        bucket,
                        key,
                        current.reader,
                        size_hint=current.size,
                        metadata=metadata,
                    )
                except Exception as exc:
                    last_error = exc
                    storage_upload_attempts_total.labels(
                        service=settings.SERVICE_NAME,
                        chunk_size_mb=str(chunk_size // MIB),
                        status="failure",
                    ).inc()
                    logger.warning(
                        "upload_attempt_failed",
                        key=key,
                        attempt=attempt,
                        max_attempts=self.policy.max_attempts,
                        chunk_size=chunk_size,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    continue

                storage_upload_attempts_total.labels(
                    service=settings.SERVICE_NAME,
                    chunk_size_mb=str(chunk_size // MIB),
                    status="success",
                ).inc()
                logger.info(
                    "upload_attempt_succeeded",
                    key=key,
                    attempt=attempt,
                    chunk_size=chunk_size,
                )
                return attempt

            raise UploadFailed(key, attempts, last_error) from last_error

        finally:
            if owned or current is not source:
                current.close()

    async def _upload_buffer(
        self,
        bucket: str,
        key: str,
        source: BufferSource,
        metadata: Optional[Dict[str, str]],
    ) -> None:
        """Buffer fallback ladder.

        1. Direct put of the bytes.
        2. Put with an explicit size argument.
        3. Stage the bytes to a temp file and run the stream retry loop over it.

        The staging file is removed whatever the outcome.
        """
        data = bytes(source.data)

        try:
            await self.store.put_object(bucket, key, data, metadata=metadata)
            logger.debug("buffer_direct_put_succeeded", key=key, size=len(data))
            return
        except Exception as exc:
            logger.warning(
                "buffer_direct_put_failed",
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )

        try:
            await self.store.put_object(bucket, key, data, size_hint=len(data), metadata=metadata)
            logger.debug("buffer_sized_put_succeeded", key=key, size=len(data))
            return
        except Exception as exc:
            logger.warning(
                "buffer_sized_put_failed",
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )

        async with staged_file(self.staging_dir, prefix="upload", suffix=extension_of(key)) as path:
            await write_bytes(path, data)
            logger.info("buffer_staged_for_stream_upload", key=key, path=str(path), size=len(data))
            try:
                stream = await asyncio.to_thread(PathSource(path).open)
                await self._upload_stream(bucket, key, stream, metadata, owned=True)
            except UploadFailed as exc:
                raise UploadFailed(
                    key, exc.attempts + BUFFER_LADDER_STEPS, exc.last_error
                ) from exc.last_error
