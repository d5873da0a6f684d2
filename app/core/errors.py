"""
Error Handling for the media storage service

Two layers live here:
- ServiceError: HTTP-facing errors with standardized codes, raised by routers
  and services and rendered by the FastAPI exception handlers.
- StorageError and its subclasses: the object-storage failure taxonomy raised
  by the storage layer. They carry no HTTP semantics; the exception handlers
  map them to status codes so raw store errors never reach clients.
"""
from enum import Enum
from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """Standardized error codes for the entire application."""

    # Upload errors (UPLOAD_xxx)
    UPLOAD_FILE_TOO_LARGE = "UPLOAD_001"
    UPLOAD_INVALID_INPUT = "UPLOAD_002"
    UPLOAD_INVALID_FOLDER = "UPLOAD_003"
    UPLOAD_FAILED = "UPLOAD_004"
    UPLOAD_INVALID_EXTENSION = "UPLOAD_005"

    # Retrieval errors (OBJECT_xxx)
    OBJECT_NOT_FOUND = "OBJECT_001"
    PROXY_STREAM_FAILED = "OBJECT_002"
    PRESIGN_FAILED = "OBJECT_003"

    # Storage errors (STORAGE_xxx)
    STORAGE_UNAVAILABLE = "STORAGE_001"
    STORAGE_DELETE_FAILED = "STORAGE_002"
    STORAGE_POLICY_FAILED = "STORAGE_003"
    STORAGE_ERROR = "STORAGE_004"


class ServiceError(HTTPException):
    """
    Base class for business logic errors.

    This exception is caught by FastAPI's exception handler and converted
    to a clean JSON response with standardized structure:

    {
        "code": "UPLOAD_004",
        "message": "Upload failed after 3 attempts",
        "details": {"key": "praticas/...", "cause": "..."}
    }
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status_code,
            detail={
                "code": code,
                "message": message,
                "details": details or {}
            }
        )
        self.code = code
        self.user_message = message
        self.error_details = details or {}


# Convenience functions for common errors
def upload_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ServiceError:
    """Create an upload-related error (400 Bad Request)."""
    return ServiceError(status.HTTP_400_BAD_REQUEST, code, message, details)


def processing_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ServiceError:
    """Create a processing-related error (500 Internal Server Error)."""
    return ServiceError(status.HTTP_500_INTERNAL_SERVER_ERROR, code, message, details)


def too_large_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ServiceError:
    """Create a payload-size error (413 Request Entity Too Large)."""
    return ServiceError(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, code, message, details)


def not_found_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ServiceError:
    """Create a not-found error (404 Not Found)."""
    return ServiceError(status.HTTP_404_NOT_FOUND, code, message, details)


def unavailable_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ServiceError:
    """Create a dependency-unavailable error (503 Service Unavailable)."""
    return ServiceError(status.HTTP_503_SERVICE_UNAVAILABLE, code, message, details)


# ============================================================================
# Storage failure taxonomy
# ============================================================================


class StorageError(Exception):
    """Base class for object store failures."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.key = key


class ConnectivityError(StorageError):
    """Store unreachable or credentials rejected."""


class ObjectNotFound(StorageError):
    """Key (or bucket) absent from the store."""


class InvalidInput(StorageError):
    """No usable payload source; raised before any network call."""


class PolicyError(StorageError):
    """Bucket policy could not be applied. The bucket stays usable."""


class UploadFailed(StorageError):
    """All upload attempts were exhausted.

    The last underlying error is kept in ``last_error`` and chained as
    ``__cause__``.
    """

    def __init__(self, key: str, attempts: int, last_error: Optional[BaseException]):
        cause = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        super().__init__(f"Upload of '{key}' failed after {attempts} attempt(s): {cause}", key=key)
        self.attempts = attempts
        self.last_error = last_error


def storage_error_to_service_error(exc: StorageError) -> ServiceError:
    """Wrap a storage failure with a domain-appropriate status code."""
    details: Dict[str, Any] = {}
    if exc.key:
        details["key"] = exc.key

    if isinstance(exc, InvalidInput):
        return upload_error(ErrorCode.UPLOAD_INVALID_INPUT, exc.message, details)
    if isinstance(exc, ObjectNotFound):
        return not_found_error(ErrorCode.OBJECT_NOT_FOUND, "Object not found", details)
    if isinstance(exc, UploadFailed):
        details["attempts"] = exc.attempts
        if exc.last_error is not None:
            details["cause"] = f"{type(exc.last_error).__name__}: {exc.last_error}"
        return processing_error(ErrorCode.UPLOAD_FAILED, "Could not store file", details)
    if isinstance(exc, ConnectivityError):
        return unavailable_error(ErrorCode.STORAGE_UNAVAILABLE, "Object store unavailable", details)
    if isinstance(exc, PolicyError):
        return processing_error(ErrorCode.STORAGE_POLICY_FAILED, "Bucket policy could not be applied", details)
    return processing_error(ErrorCode.STORAGE_ERROR, "Object store error", details)
