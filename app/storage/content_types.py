"""Extension-based MIME type lookup for stored media."""

from pathlib import PurePosixPath
from typing import Optional


DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Values stores report when no Content-Type was recorded at write time
GENERIC_CONTENT_TYPES = frozenset({
    "application/octet-stream",
    "binary/octet-stream",
})

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
}

AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".ogg", ".m4a"})


def extension_of(key: str) -> str:
    """Lower-cased extension of the last path segment, '' when absent."""
    return PurePosixPath(key).suffix.lower()


def content_type_for(key: str) -> str:
    return CONTENT_TYPES.get(extension_of(key), DEFAULT_CONTENT_TYPE)


def is_audio_key(key: str) -> bool:
    return extension_of(key) in AUDIO_EXTENSIONS


def is_generic(content_type: Optional[str]) -> bool:
    if not content_type:
        return True
    return content_type.split(";")[0].strip().lower() in GENERIC_CONTENT_TYPES
