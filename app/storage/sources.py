"""Payload sources accepted by the upload engine.

A payload is one of three shapes:

- ``StreamSource``: a readable binary stream plus its total size. Streams are
  single-read; a source built with an ``opener`` can produce a fresh stream
  starting at byte 0 via ``reopen()``.
- ``BufferSource``: an in-memory ``bytes`` payload. Immutable and has no
  ``reopen()``; it is simply sent again.
- ``PathSource``: a file on local disk, opened into a reopenable
  ``StreamSource`` when an upload starts.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from app.core.errors import InvalidInput


@dataclass
class StreamSource:
    """Binary stream of known size, optionally reopenable."""

    reader: BinaryIO
    size: int
    opener: Optional[Callable[[], BinaryIO]] = field(default=None, repr=False)

    @property
    def reopenable(self) -> bool:
        return self.opener is not None

    @property
    def rewindable(self) -> bool:
        """True when a retry can restart reading at byte 0."""
        if self.reopenable:
            return True
        seekable = getattr(self.reader, "seekable", None)
        try:
            return bool(seekable()) if seekable else False
        except (OSError, ValueError):
            return False

    def reopen(self) -> "StreamSource":
        """Close the current stream and return a source over a fresh one."""
        if self.opener is None:
            raise InvalidInput("Stream source cannot be reopened")
        self.close()
        return StreamSource(reader=self.opener(), size=self.size, opener=self.opener)

    def rewind(self) -> "StreamSource":
        """Reopen when possible, otherwise seek the existing stream to 0."""
        if self.reopenable:
            return self.reopen()
        self.reader.seek(0)
        return self

    def close(self) -> None:
        self.reader.close()

    def validate(self) -> None:
        if self.reader is None or not hasattr(self.reader, "read"):
            raise InvalidInput("Stream source has no readable stream")
        if self.size is None or self.size < 0:
            raise InvalidInput(f"Stream source size must be known and non-negative, got {self.size}")


@dataclass(frozen=True)
class BufferSource:
    """In-memory payload."""

    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def validate(self) -> None:
        if not isinstance(self.data, (bytes, bytearray, memoryview)):
            raise InvalidInput("Buffer source must hold bytes")
        if len(self.data) == 0:
            raise InvalidInput("Buffer source is empty")


@dataclass(frozen=True)
class PathSource:
    """File on local disk."""

    path: Union[str, Path]

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    def validate(self) -> None:
        path = Path(self.path)
        if not path.is_file():
            raise InvalidInput(f"Payload file not found: {path}")
        if not os.access(path, os.R_OK):
            raise InvalidInput(f"Payload file is not readable: {path}")

    def open(self) -> StreamSource:
        """Open the file as a stream source that can be reopened on retry."""
        path = str(self.path)

        def opener() -> BinaryIO:
            return open(path, "rb")

        try:
            return StreamSource(reader=opener(), size=self.size, opener=opener)
        except OSError as exc:
            raise InvalidInput(f"Payload file could not be opened: {path}: {exc}") from exc


PayloadSource = Union[StreamSource, BufferSource, PathSource]
