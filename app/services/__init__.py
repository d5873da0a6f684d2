"""
Services package - Business Logic Layer

Contains the media lifecycle and retrieval logic separated from HTTP concerns.
"""
from app.services.media_service import MediaService, StoredMedia
from app.services.proxy_service import ResolvedObject, RetrievalProxy, resolve_content_type

__all__ = ["MediaService", "StoredMedia", "RetrievalProxy", "ResolvedObject", "resolve_content_type"]
