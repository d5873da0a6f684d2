"""Retry policy for uploads: attempt budget, part-size rotation and backoff."""

from dataclasses import dataclass
from typing import Tuple


MIB = 1024 * 1024

DEFAULT_CHUNK_SIZES: Tuple[int, ...] = (10 * MIB, 5 * MIB, 16 * MIB)


@dataclass(frozen=True)
class RetryPolicy:
    """Ordered part-size ladder plus attempt budget.

    Attempt ``n`` (1-indexed) uses ``chunk_sizes[(n - 1) % len(chunk_sizes)]``,
    so the default ladder rotates 10 MiB, 5 MiB, 16 MiB, 10 MiB...
    """

    max_attempts: int = 3
    chunk_sizes: Tuple[int, ...] = DEFAULT_CHUNK_SIZES
    backoff_seconds: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if not self.chunk_sizes:
            raise ValueError("chunk_sizes must not be empty")
        if any(size <= 0 for size in self.chunk_sizes):
            raise ValueError(f"chunk sizes must be positive, got {self.chunk_sizes}")
        if self.backoff_seconds < 0:
            raise ValueError(f"backoff_seconds cannot be negative, got {self.backoff_seconds}")

    def chunk_size_for(self, attempt: int) -> int:
        if attempt < 1:
            raise ValueError(f"attempt numbers start at 1, got {attempt}")
        return self.chunk_sizes[(attempt - 1) % len(self.chunk_sizes)]

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt``. The first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return self.backoff_seconds * (attempt - 1)

    def schedule(self) -> Tuple[int, ...]:
        """Part size of every attempt this policy allows, in order."""
        return tuple(self.chunk_size_for(n) for n in range(1, self.max_attempts + 1))
