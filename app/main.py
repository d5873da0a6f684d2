"""Main FastAPI application for the Media Storage Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional

from app.core.config import settings
from app.core.errors import StorageError
from app.core.logging_config import setup_logging, get_logger
from app.api.v1 import upload, proxy, health, metrics
from app.api.v1.metrics import storage_lifecycle_state
from app.api.middleware import RequestLoggingMiddleware, PerformanceLoggingMiddleware, PrometheusMiddleware
from app.api.exception_handlers import (
    http_exception_handler,
    validation_exception_handler,
    storage_exception_handler,
    general_exception_handler,
)
from app.services.media_service import MediaService
from app.services.proxy_service import RetrievalProxy
from app.storage.client import StorageClient
from app.storage.lifecycle import BucketLifecycleManager
from app.storage.protocol import ObjectStore
from app.storage.uploader import UploadEngine


# Initialize logging system (MUST be done before any logging calls)
setup_logging(debug=settings.is_debug_mode, json_logs=settings.use_json_logs)
logger = get_logger(__name__)


def build_services(app: FastAPI, store: ObjectStore) -> None:
    """Wire the storage components around one store and keep them on app.state."""
    engine = UploadEngine(store, settings.retry_policy, staging_dir=settings.STAGING_DIR)

    app.state.storage_client = store
    app.state.upload_engine = engine
    app.state.lifecycle = BucketLifecycleManager(
        store,
        settings.MINIO_BUCKET_NAME,
        region=settings.MINIO_REGION,
        public_prefix=settings.PUBLIC_POLICY_PREFIX,
        self_test_prefix=settings.SELF_TEST_PREFIX,
    )
    app.state.media_service = MediaService(
        store,
        engine,
        settings.MINIO_BUCKET_NAME,
        public_base_url=settings.MINIO_PUBLIC_URL,
        self_test_prefix=settings.SELF_TEST_PREFIX,
    )
    app.state.retrieval_proxy = RetrievalProxy(
        store,
        settings.MINIO_BUCKET_NAME,
        staging_dir=settings.STAGING_DIR,
        placeholder_path=settings.PROXY_PLACEHOLDER_PATH,
    )


def create_app(storage_client: Optional[ObjectStore] = None) -> FastAPI:
    """Application factory.

    Args:
        storage_client: Object store to use instead of a StorageClient built
            from settings (tests pass an in-memory store here)

    Returns:
        FastAPI: Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events (startup and shutdown).

        Handles:
        - Storage client construction and connection
        - Bucket lifecycle (connectivity, bucket, policy, self-test)
        - Logging startup information
        - Graceful resource cleanup
        """
        # Startup
        logger.info(
            "application_startup",
            service=settings.SERVICE_NAME,
            version=settings.VERSION,
            environment=settings.ENVIRONMENT,
            debug_mode=settings.is_debug_mode,
            log_level=settings.LOG_LEVEL,
            endpoint_url=settings.endpoint_url,
            bucket=settings.MINIO_BUCKET_NAME,
        )

        owned_client = None
        store = storage_client
        if store is None:
            owned_client = StorageClient.from_settings(settings)
            await owned_client.start()
            store = owned_client

        build_services(app, store)

        if settings.STORAGE_INIT_ON_STARTUP:
            ready = await app.state.lifecycle.initialize()
            storage_lifecycle_state.labels(
                service=settings.SERVICE_NAME, bucket=settings.MINIO_BUCKET_NAME
            ).set(1 if ready else 0)
            if ready:
                logger.info("storage_initialized", bucket=settings.MINIO_BUCKET_NAME)
            else:
                # Keep serving; storage endpoints fail per request instead
                logger.error(
                    "storage_initialization_incomplete",
                    bucket=settings.MINIO_BUCKET_NAME,
                    state=app.state.lifecycle.state.value,
                    errors=app.state.lifecycle.errors,
                )

        yield

        # Shutdown - cleanup resources
        logger.info("application_shutdown_initiated")

        if owned_client is not None:
            try:
                await owned_client.close()
                logger.info("storage_client_closed")
            except Exception as e:
                logger.error(
                    "storage_client_cleanup_failed",
                    error=str(e),
                    exc_info=True,
                )

        logger.info("application_shutdown", graceful=True)

    app = FastAPI(
        title=settings.SERVICE_NAME,
        description="Media upload, retrieval proxy and cleanup for an S3-compatible object store",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Exception handlers for structured error logging
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Middleware stack (order matters - first added is executed last!)
    # 1. Prometheus metrics (outermost - measures everything)
    app.add_middleware(PrometheusMiddleware)
    # 2. Request logging with trace IDs
    app.add_middleware(RequestLoggingMiddleware)
    # 3. Performance monitoring for slow requests
    app.add_middleware(PerformanceLoggingMiddleware, slow_request_threshold_ms=1000.0)

    # Proxy URLs are embedded by browser clients on other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routers
    app.include_router(upload.router)
    app.include_router(proxy.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    @app.get("/")
    async def root():
        """Root endpoint with service information.

        Returns:
            dict: Service metadata and useful links
        """
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.VERSION,
            "description": "Media storage and retrieval proxy",
            "documentation": "/docs",
            "health_check": "/api/health",
            "storage_health": "/api/health/storage",
            "proxy_prefix": "/api/proxy/minio/",
        }

    @app.get("/info")
    async def service_info():
        """Detailed service configuration information.

        Returns:
            dict: Current service configuration (non-sensitive data)
        """
        return {
            "service": {
                "name": settings.SERVICE_NAME,
                "version": settings.VERSION
            },
            "storage": {
                "endpoint_url": settings.endpoint_url,
                "bucket": settings.MINIO_BUCKET_NAME,
                "region": settings.MINIO_REGION,
                "path_style": settings.MINIO_PATH_STYLE,
                "public_url": settings.MINIO_PUBLIC_URL,
            },
            "upload": {
                "folders": settings.UPLOAD_FOLDERS,
                "max_retries": settings.UPLOAD_MAX_RETRIES,
                "chunk_sizes_mb": settings.UPLOAD_CHUNK_SIZES_MB,
                "buffer_threshold_kb": settings.UPLOAD_BUFFER_THRESHOLD_KB,
            },
            "limits": {
                "max_upload_size_mb": settings.MAX_UPLOAD_SIZE_MB,
                "presigned_url_ttl_seconds": settings.PRESIGNED_URL_TTL_SECONDS,
                "audio_url_ttl_seconds": settings.AUDIO_URL_TTL_SECONDS,
            }
        }

    return app


app = create_app()
