"""FastAPI dependencies for service lookup and request validation."""

from fastapi import Header, HTTPException, Path, Request
from typing import Optional

from app.core.config import settings
from app.core.errors import ErrorCode, too_large_error, upload_error
from app.core.logging_config import get_logger
from app.services.media_service import MediaService
from app.services.proxy_service import RetrievalProxy
from app.storage.content_types import extension_of
from app.storage.lifecycle import BucketLifecycleManager


logger = get_logger(__name__)


async def verify_content_length(content_length: Optional[int] = Header(None)):
    """Pre-validate upload size before processing.

    The multipart envelope adds a little overhead, so the exact limit is
    enforced again on the file itself.

    Args:
        content_length: Content-Length header value

    Raises:
        HTTPException: 413 if file exceeds maximum size

    Returns:
        int: Content length if valid
    """
    max_size = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if content_length and content_length > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum allowed: {settings.MAX_UPLOAD_SIZE_MB}MB"
        )
    return content_length


def validate_folder(folder: str = Path(..., description="Destination folder")) -> str:
    """Reject folders outside the configured upload folders.

    Raises:
        ServiceError: 400 with UPLOAD_INVALID_FOLDER
    """
    if folder not in settings.UPLOAD_FOLDERS:
        logger.warning("upload_folder_rejected", folder=folder)
        raise upload_error(
            code=ErrorCode.UPLOAD_INVALID_FOLDER,
            message=f"Unknown upload folder: {folder}",
            details={"allowed": settings.UPLOAD_FOLDERS},
        )
    return folder


def enforce_folder_rules(folder: str, filename: Optional[str], size: int) -> None:
    """Apply the per-folder extension whitelist and size limit.

    Raises:
        ServiceError: 400 with UPLOAD_INVALID_EXTENSION, 413 with UPLOAD_FILE_TOO_LARGE
    """
    rule = settings.folder_rule(folder)
    extension = extension_of(filename or "")
    if rule.extensions and extension not in rule.extensions:
        logger.warning("upload_extension_rejected", folder=folder, extension=extension)
        raise upload_error(
            code=ErrorCode.UPLOAD_INVALID_EXTENSION,
            message=f"Invalid file type for {folder}. Allowed: {', '.join(rule.extensions)}",
            details={"extension": extension, "allowed": rule.extensions},
        )

    max_size = settings.max_upload_bytes(folder)
    if size > max_size:
        logger.warning("upload_size_rejected", folder=folder, size=size, max_size=max_size)
        raise too_large_error(
            code=ErrorCode.UPLOAD_FILE_TOO_LARGE,
            message=f"File too large. Maximum allowed for {folder}: {max_size // (1024 * 1024)}MB",
            details={"size": size, "max_size": max_size},
        )


# ============================================================================
# Service Layer Dependencies
# ============================================================================
#
# Instances are built once in the application lifespan and kept on
# app.state, so tests can inject a fake object store through create_app().


def get_media_service(request: Request) -> MediaService:
    """Media service bound to the process-wide storage client.

    Usage in endpoint:
        @router.delete("/{key:path}")
        async def delete_file(
            key: str,
            service: MediaService = Depends(get_media_service)
        ):
            await service.remove(key)
    """
    return request.app.state.media_service


def get_retrieval_proxy(request: Request) -> RetrievalProxy:
    return request.app.state.retrieval_proxy


def get_lifecycle_manager(request: Request) -> BucketLifecycleManager:
    return request.app.state.lifecycle
