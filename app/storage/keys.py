"""Object key and URL conventions.

Keys look like ``<folder>/<owner_id>/<epoch_ms>-<uuid4><ext>``, e.g.
``manifestacoes/60a1f.../1699999999999-3fae91c2-...-c1b2.jpg``. The folder
names the purpose of the blob, the owner segment ties it to a domain record,
and the timestamp plus random suffix keeps keys unique so they are never
reused after deletion.
"""

import time
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import quote, unquote
from uuid import uuid4

from app.core.errors import InvalidInput


PROXY_PREFIX = "/api/proxy/minio/"
DEFAULT_EXTENSION = ".bin"


def _clean_segment(value: str, name: str, single: bool = False) -> str:
    segment = (value or "").strip().strip("/")
    if not segment:
        raise InvalidInput(f"Object key {name} cannot be empty")
    if single and "/" in segment:
        raise InvalidInput(f"Object key {name} must be a single path segment, got '{segment}'")
    if ".." in segment.split("/"):
        raise InvalidInput(f"Path traversal patterns (..) are not allowed in {name}")
    return segment


def normalize_extension(filename: Optional[str] = None, extension: Optional[str] = None) -> str:
    """Extension for a new key, taken from ``extension`` or ``filename``."""
    ext = extension
    if ext is None and filename:
        ext = PurePosixPath(filename.replace("\\", "/")).suffix
    if not ext:
        return DEFAULT_EXTENSION
    ext = ext.strip().lower()
    if not ext.startswith("."):
        ext = f".{ext}"
    # Keep keys URL-safe: only alphanumerics after the dot
    if not ext[1:].isalnum():
        return DEFAULT_EXTENSION
    return ext


def generate_object_key(
    folder: str,
    owner_id: Optional[str] = None,
    filename: Optional[str] = None,
    extension: Optional[str] = None,
) -> str:
    """Build a new, globally unique object key."""
    parts = [_clean_segment(folder, "folder", single=True)]
    if owner_id is not None and str(owner_id).strip():
        parts.append(_clean_segment(str(owner_id), "owner", single=True))

    epoch_ms = time.time_ns() // 1_000_000
    ext = normalize_extension(filename, extension)
    parts.append(f"{epoch_ms}-{uuid4()}{ext}")
    return "/".join(parts)


def normalize_key(key: str) -> str:
    """Validate a bucket-relative key received from a request."""
    cleaned = _clean_segment(key, "key")
    if len(cleaned.encode("utf-8")) > 1024:
        raise InvalidInput(
            f"Object key too long ({len(cleaned.encode('utf-8'))} bytes, max 1024)"
        )
    return cleaned


def proxy_url(key: str, public_base_url: Optional[str] = None) -> str:
    """URL stored in domain records for a key.

    Points at the proxy route unless a public base URL is configured, in
    which case clients fetch straight from the store.
    """
    if public_base_url:
        return f"{public_base_url.rstrip('/')}/{quote(key, safe='/')}"
    return f"{PROXY_PREFIX}{quote(key, safe='/')}"


def key_from_url(url: str, public_base_url: Optional[str] = None) -> Optional[str]:
    """Recover the object key from a URL produced by ``proxy_url``."""
    if not url:
        return None
    if url.startswith(PROXY_PREFIX):
        return unquote(url[len(PROXY_PREFIX):])
    if public_base_url and url.startswith(public_base_url.rstrip("/") + "/"):
        return unquote(url[len(public_base_url.rstrip("/")) + 1:])
    return None
