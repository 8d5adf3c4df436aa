"""Chunked thread-pool execution for read-only query phases.

Each chunk writes to its own result; results come back in chunk order so any
reduction over them is independent of thread scheduling.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, TypeVar

T = TypeVar("T")


def chunk_bounds(n: int, chunk_size: int) -> list[tuple[int, int]]:
    """Split ``range(n)`` into consecutive ``(start, stop)`` pairs."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [(start, min(start + chunk_size, n)) for start in range(0, n, chunk_size)]


def map_chunks(
    fn: Callable[[int, int], T],
    n: int,
    chunk_size: int = 2048,
    workers: int | None = None,
) -> list[T]:
    """Apply ``fn(start, stop)`` to every chunk of ``range(n)``.

    Runs inline when there is a single chunk or ``workers == 1``.
    """
    bounds = chunk_bounds(n, chunk_size)
    if len(bounds) <= 1 or workers == 1:
        return [fn(start, stop) for start, stop in bounds]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(fn, start, stop) for start, stop in bounds]
        return [f.result() for f in futures]
