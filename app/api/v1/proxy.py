"""Retrieval proxy endpoints serving stored objects under /api/proxy."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.types import Receive, Scope, Send

from app.api.dependencies import get_retrieval_proxy
from app.api.v1.metrics import proxy_responses_total
from app.core.config import settings
from app.core.errors import (
    ErrorCode,
    ObjectNotFound,
    not_found_error,
    processing_error,
)
from app.core.logging_config import get_logger
from app.services.proxy_service import RetrievalProxy
from app.storage.content_types import is_audio_key
from app.storage.keys import normalize_key
from app.storage.staging import discard_file


logger = get_logger(__name__)
router = APIRouter(prefix="/api/proxy", tags=["proxy"])


class StagedFileResponse(FileResponse):
    """FileResponse that deletes its file once sending finished or failed."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await discard_file(self.path)


def _count(route: str, outcome: str) -> None:
    proxy_responses_total.labels(
        service=settings.SERVICE_NAME, route=route, outcome=outcome
    ).inc()


def _not_found(request: Request, key: str, route: str) -> Response:
    """Audio misses get a fallback hint so players can degrade gracefully."""
    if request.method == "HEAD":
        _count(route, "not_found")
        return Response(status_code=404)

    if is_audio_key(key):
        _count(route, "fallback")
        logger.info("proxy_audio_missing", key=key)
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Audio file not found",
                "key": key,
                "use_fallback": True,
            },
        )

    _count(route, "not_found")
    raise not_found_error(
        code=ErrorCode.OBJECT_NOT_FOUND,
        message=f"Object not found: {key}",
        details={"key": key},
    )


def _failure(proxy: RetrievalProxy, key: str, route: str, exc: Exception) -> Response:
    logger.error(
        "proxy_stream_failed",
        key=key,
        route=route,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )
    placeholder = proxy.placeholder()
    if placeholder is not None:
        _count(route, "placeholder")
        return FileResponse(
            placeholder,
            media_type="image/png",
            headers={"Cache-Control": "no-cache"},
        )

    _count(route, "error")
    raise processing_error(
        code=ErrorCode.PROXY_STREAM_FAILED,
        message=f"Could not load object: {key}",
        details={"key": key, "error_type": type(exc).__name__},
    )


async def _serve(request: Request, proxy: RetrievalProxy, raw_key: str, route: str) -> Response:
    """Stat, negotiate headers, stage to disk, then send.

    HEAD requests stop after the stat and never stage.
    """
    key = normalize_key(raw_key)
    logger.debug("proxy_request", key=key, route=route, method=request.method)

    try:
        resolved = await proxy.resolve(key)
    except ObjectNotFound:
        return _not_found(request, key, route)
    except Exception as exc:
        return _failure(proxy, key, route, exc)

    headers = proxy.response_headers(resolved)

    if request.method == "HEAD":
        _count(route, "head")
        headers["Content-Length"] = str(resolved.size)
        return Response(status_code=200, headers=headers)

    try:
        path = await proxy.stage(key)
    except ObjectNotFound:
        # Removed between stat and read
        return _not_found(request, key, route)
    except Exception as exc:
        return _failure(proxy, key, route, exc)

    _count(route, "served")
    media_type = headers.pop("Content-Type")
    return StagedFileResponse(path, media_type=media_type, headers=headers)


@router.api_route("/minio/{key:path}", methods=["GET", "HEAD"])
async def proxy_object(
    request: Request,
    key: str,
    proxy: RetrievalProxy = Depends(get_retrieval_proxy),
):
    """Serve ``<key>`` from the bucket. This is the URL stored in domain records."""
    return await _serve(request, proxy, key, "minio")


@router.api_route("/contents/{filename}", methods=["GET", "HEAD"])
async def proxy_content(
    request: Request,
    filename: str,
    proxy: RetrievalProxy = Depends(get_retrieval_proxy),
):
    """Serve ``contents/<filename>``."""
    return await _serve(request, proxy, f"contents/{filename}", "contents")


@router.api_route("/audio/{key:path}", methods=["GET", "HEAD"])
async def proxy_audio(
    request: Request,
    key: str,
    proxy: RetrievalProxy = Depends(get_retrieval_proxy),
):
    return await _serve(request, proxy, key, "audio")
