"""Prometheus metrics endpoint and metric definitions."""

from fastapi import APIRouter, Response
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

from app.core.config import settings


# Create router
router = APIRouter(tags=["metrics"])


# Service info metric
service_info = Info(
    'service',
    'Service information',
    registry=REGISTRY
)
service_info.info({
    'name': settings.SERVICE_NAME,
    'version': settings.VERSION,
    'environment': settings.ENVIRONMENT,
})


# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['service', 'method', 'endpoint', 'status'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['service', 'method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
    registry=REGISTRY
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'HTTP requests currently in progress',
    ['service', 'method'],
    registry=REGISTRY
)


# Upload Metrics
storage_upload_attempts_total = Counter(
    'storage_upload_attempts_total',
    'Total upload attempts against the object store',
    ['service', 'chunk_size_mb', 'status'],  # status: success, failure
    registry=REGISTRY
)

storage_uploads_total = Counter(
    'storage_uploads_total',
    'Total upload calls by payload source and outcome',
    ['service', 'source', 'status'],  # source: stream, buffer, path
    registry=REGISTRY
)

storage_upload_duration_seconds = Histogram(
    'storage_upload_duration_seconds',
    'Upload duration in seconds, all attempts included',
    ['service', 'source'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
    registry=REGISTRY
)


# Storage Backend Metrics
storage_operations_total = Counter(
    'storage_operations_total',
    'Total storage operations',
    ['service', 'operation', 'status'],  # operation: remove, presign, sweep
    registry=REGISTRY
)

storage_lifecycle_state = Gauge(
    'storage_lifecycle_initialized',
    'Whether bucket lifecycle initialization completed (1) or not (0)',
    ['service', 'bucket'],
    registry=REGISTRY
)


# Retrieval Proxy Metrics
proxy_responses_total = Counter(
    'proxy_responses_total',
    'Total proxy responses',
    ['service', 'route', 'outcome'],  # outcome: served, head, not_found, fallback, placeholder, error
    registry=REGISTRY
)

proxy_staged_bytes = Histogram(
    'proxy_staged_bytes',
    'Bytes staged to disk before delivery',
    ['service'],
    buckets=(1024, 16384, 131072, 1048576, 5242880, 20971520, 104857600),
    registry=REGISTRY
)


# Error Tracking Metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['service', 'error_type', 'endpoint'],
    registry=REGISTRY
)


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus exposition format for scraping.

    Returns:
        Response: Prometheus metrics in text format
    """
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST
    )
