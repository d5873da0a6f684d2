"""Scoped temporary files for upload and download staging.

Every staging file is created through ``staged_file()`` and removed when the
scope exits, whether the body returned or raised.
"""

import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles
import aiofiles.os

from app.core.logging_config import get_logger


logger = get_logger(__name__)

WRITE_CHUNK_SIZE = 64 * 1024


def _ensure_directory(directory: Optional[Union[str, Path]]) -> Optional[str]:
    if directory is None:
        return None
    Path(directory).mkdir(parents=True, exist_ok=True)
    return str(directory)


def create_staging_file(
    directory: Optional[Union[str, Path]] = None,
    prefix: str = "staging",
    suffix: str = "",
) -> Path:
    """Create a uniquely named empty file the caller must discard.

    The name carries a nanosecond timestamp plus the random part chosen by
    ``mkstemp``, so concurrent requests never collide.
    """
    fd, name = tempfile.mkstemp(
        prefix=f"{prefix}-{time.time_ns()}-",
        suffix=suffix,
        dir=_ensure_directory(directory),
    )
    os.close(fd)
    logger.debug("staging_file_created", path=name)
    return Path(name)


@asynccontextmanager
async def staged_file(
    directory: Optional[Union[str, Path]] = None,
    prefix: str = "staging",
    suffix: str = "",
) -> AsyncIterator[Path]:
    """Scope around ``create_staging_file`` that removes the file on exit.

    Args:
        directory: Parent directory (created if missing); system temp dir when None
        prefix: Leading part of the file name
        suffix: Trailing part of the file name, usually the object extension

    Yields:
        Path: Location of the staging file
    """
    path = create_staging_file(directory, prefix, suffix)
    try:
        yield path
    finally:
        await discard_file(path)


async def discard_file(path: Union[str, Path]) -> bool:
    """Remove a staging file. Returns False when it was already gone."""
    try:
        await aiofiles.os.remove(str(path))
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning(
            "staging_file_cleanup_failed",
            path=str(path),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return False
    logger.debug("staging_file_removed", path=str(path))
    return True


async def write_bytes(path: Union[str, Path], data: bytes) -> int:
    async with aiofiles.open(path, "wb") as f:
        await f.write(data)
    return len(data)


async def write_chunks(path: Union[str, Path], chunks: AsyncIterator[bytes]) -> int:
    """Drain an async byte iterator into ``path``. Returns bytes written."""
    bytes_written = 0
    async with aiofiles.open(path, "wb") as f:
        async for chunk in chunks:
            await f.write(chunk)
            bytes_written += len(chunk)
    return bytes_written


async def write_stream(path: Union[str, Path], stream, chunk_size: int = WRITE_CHUNK_SIZE) -> int:
    """Copy an async readable (e.g. an ``UploadFile``) into ``path``."""
    bytes_written = 0
    async with aiofiles.open(path, "wb") as f:
        while chunk := await stream.read(chunk_size):
            await f.write(chunk)
            bytes_written += len(chunk)
    return bytes_written
