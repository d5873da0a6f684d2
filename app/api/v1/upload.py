"""
Upload API endpoints: store, presign and delete media.

Clean Architecture Pattern:
- Router handles HTTP concerns (form parsing, size limits, response format)
- MediaService handles keys, uploads and best-effort cleanup
- Storage errors are mapped to HTTP responses by the exception handlers
"""

import os
from fastapi import APIRouter, UploadFile, File, Form, Depends, Query, status
from typing import Optional

from app.api.dependencies import (
    enforce_folder_rules,
    get_media_service,
    validate_folder,
    verify_content_length,
)
from app.core.config import settings
from app.core.errors import ErrorCode, upload_error
from app.core.logging_config import get_logger
from app.services.media_service import MediaService
from app.storage.content_types import extension_of
from app.storage.keys import normalize_key
from app.storage.sources import BufferSource, PathSource
from app.storage.staging import staged_file, write_stream


logger = get_logger(__name__)
router = APIRouter(prefix="/api/upload", tags=["upload"])


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


@router.post("/{folder}", status_code=status.HTTP_201_CREATED)
async def upload_file(
    folder: str = Depends(validate_folder),
    file: UploadFile = File(...),
    owner_id: Optional[str] = Form(None),
    content_length: Optional[int] = Depends(verify_content_length),
    service: MediaService = Depends(get_media_service),
):
    """Store an uploaded file under ``folder``.

    Small files stay in memory and go through the buffer ladder; larger ones
    are spooled to a staging file first and uploaded as a path payload so
    every retry can reopen them from byte 0.

    Args:
        folder: Destination folder, one of UPLOAD_FOLDERS
        file: Multipart file
        owner_id: Owning record id, becomes the second key segment
        content_length: Pre-validated content length (via dependency)
        service: Media service (via dependency injection)

    Returns:
        dict: ``{"success": true, "data": {key, url, original_name, content_type, size}}``

    Raises:
        ServiceError: 400 for empty files or a disallowed extension,
            413 if the file exceeds the folder limit
        StorageError: Mapped to 400/500/503 by the exception handlers
    """
    size = _upload_size(file)

    logger.info(
        "upload_request_received",
        folder=folder,
        owner_id=owner_id,
        filename=file.filename,
        content_type=file.content_type,
        size=size,
    )

    if size == 0:
        raise upload_error(ErrorCode.UPLOAD_INVALID_INPUT, "Uploaded file is empty")
    enforce_folder_rules(folder, file.filename, size)

    if size <= settings.UPLOAD_BUFFER_THRESHOLD_KB * 1024:
        data = await file.read()
        stored = await service.store(
            BufferSource(data),
            folder,
            owner_id=owner_id,
            filename=file.filename,
            content_type=file.content_type,
        )
    else:
        suffix = extension_of(file.filename or "")
        async with staged_file(settings.STAGING_DIR, prefix="upload", suffix=suffix) as path:
            await file.seek(0)
            await write_stream(path, file)
            stored = await service.store(
                PathSource(path),
                folder,
                owner_id=owner_id,
                filename=file.filename,
                content_type=file.content_type,
            )

    logger.info("upload_stored", key=stored.key, folder=folder, size=stored.size)

    return {
        "success": True,
        "data": {
            "key": stored.key,
            "url": stored.url,
            "original_name": stored.original_filename,
            "content_type": stored.content_type,
            "size": stored.size,
        },
    }


@router.get("/url/{key:path}")
async def get_presigned_url(
    key: str,
    ttl: Optional[int] = Query(None, ge=1, le=604800, description="Expiry in seconds"),
    service: MediaService = Depends(get_media_service),
):
    """Time-limited direct download URL (24 hours unless ``ttl`` is given)."""
    key = normalize_key(key)
    url = await service.presigned_url(key, ttl or settings.PRESIGNED_URL_TTL_SECONDS)
    return {"success": True, "url": url}


@router.get("/audio-url/{key:path}")
async def get_audio_url(
    key: str,
    service: MediaService = Depends(get_media_service),
):
    """Streaming URL for audio players, valid for AUDIO_URL_TTL_SECONDS (2 hours)."""
    key = normalize_key(key)
    url = await service.presigned_url(key, settings.AUDIO_URL_TTL_SECONDS)
    return {"success": True, "url": url}


@router.delete("/{key:path}")
async def delete_file(
    key: str,
    service: MediaService = Depends(get_media_service),
):
    """Remove an object. Absent keys succeed too.

    ``removed`` is False when the store could not be reached; the object is
    then left for the orphan sweep.
    """
    key = normalize_key(key)
    removed = await service.remove(key)
    return {"success": True, "data": {"key": key, "removed": removed}}
