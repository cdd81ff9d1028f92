"""Split a particle index range into contiguous, disjoint chunks."""

from __future__ import annotations

import math


def chunk_size(n: int, num_chunks: int) -> int:
    """Size of every chunk but possibly the last: ``ceil(n / num_chunks)``."""
    if num_chunks < 1:
        raise ValueError(f"num_chunks must be at least 1, got {num_chunks}")
    return math.ceil(n / num_chunks)


def partition(n: int, num_chunks: int) -> list[tuple[int, int]]:
    """Contiguous ``[start, end)`` ranges covering ``[0, n)``.

    Chunk ``k`` covers ``[k*c, min((k+1)*c, n))`` with ``c = ceil(n / num_chunks)``.
    Empty chunks are omitted, so fewer than ``num_chunks`` ranges are returned
    when ``n`` is small.

    Args:
        n: Number of particles.
        num_chunks: Number of workers to split across.

    Returns:
        List of (start, end) index pairs in ascending order.
    """
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    size = chunk_size(n, num_chunks)
    ranges = []
    for k in range(num_chunks):
        start = k * size
        if start >= n:
            break
        ranges.append((start, min(start + size, n)))
    return ranges
