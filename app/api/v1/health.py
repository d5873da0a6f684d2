"""Health and monitoring API endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone

from app.api.dependencies import get_lifecycle_manager
from app.core.config import settings
from app.core.logging_config import get_logger
from app.storage.lifecycle import BucketLifecycleManager


logger = get_logger(__name__)
router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check endpoint.

    Returns service status and version information.
    Use for load balancer health checks.

    Returns:
        dict: Health status with service info and timestamp
    """
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "version": settings.VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/storage")
async def storage_health(lifecycle: BucketLifecycleManager = Depends(get_lifecycle_manager)):
    """Object store readiness as recorded by the startup lifecycle.

    Returns 200 once the self-test passed, 503 otherwise. Does not contact
    the store; per-request failures surface on the storage endpoints.

    Returns:
        dict: Lifecycle state, bucket and collected errors
    """
    status = lifecycle.status()
    if not status["ready"]:
        logger.warning("storage_not_ready", state=status["state"], errors=status["errors"])

    return JSONResponse(
        status_code=200 if status["ready"] else 503,
        content={
            "status": "healthy" if status["ready"] else "degraded",
            "storage": status,
            "timestamp": datetime.now(timezone.utc).isoformat()
        },
    )
