"""Data-parallel helpers: chunked parallel-for and bulk buffer fill.

Work over ``n`` flat elements is split into disjoint contiguous chunks that
cover ``[0, n)`` exactly once. Chunk size only affects scheduling, never the
result. Chunks run on a thread pool; the per-chunk work is vectorized numpy,
which releases the GIL for the heavy lifting.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from voxfusion.core.errors import ConfigError, ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1 << 16
MAX_TASKS = 2880


def default_workers() -> int:
    return max(1, min(8, os.cpu_count() or 1))


def iter_chunks(n: int, chunk_size: int = DEFAULT_CHUNK_SIZE, max_tasks: int = MAX_TASKS) -> Iterator[tuple[int, int]]:
    """Yield ``(start, stop)`` ranges partitioning ``[0, n)``.

    The chunk size grows when ``n / chunk_size`` would exceed ``max_tasks``,
    so large buffers never fan out into an unbounded number of tasks.
    """
    if n < 0:
        raise ConfigError(f"Cannot partition a negative range ({n})")
    if chunk_size <= 0 or max_tasks <= 0:
        raise ConfigError(f"chunk_size and max_tasks must be positive ({chunk_size}, {max_tasks})")

    chunk = max(chunk_size, -(-n // max_tasks))
    for start in range(0, n, chunk):
        yield start, min(n, start + chunk)


def parallel_for(
    n: int,
    fn: Callable[[int, int], object],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    num_workers: int | None = None,
) -> list:
    """Call ``fn(start, stop)`` once per chunk of ``[0, n)``.

    Returns the per-chunk results in chunk order. Any failure inside a chunk
    aborts the pass and surfaces as :class:`ExecutionError`.
    """
    chunks = list(iter_chunks(n, chunk_size))
    workers = num_workers or default_workers()
    logger.debug(f"parallel_for: n={n} chunks={len(chunks)} workers={workers}")

    try:
        if workers == 1 or len(chunks) <= 1:
            return [fn(start, stop) for start, stop in chunks]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(fn, start, stop) for start, stop in chunks]
            return [f.result() for f in futures]
    except ExecutionError:
        raise
    except Exception as exc:
        raise ExecutionError(f"Parallel pass over {n} elements failed: {exc}") from exc


def bulk_fill(
    buf: np.ndarray,
    value: float,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    num_workers: int | None = None,
) -> np.ndarray:
    """Set every element of a flat buffer to ``value`` in place."""
    if buf.ndim != 1:
        raise ConfigError(f"bulk_fill expects a flat buffer, got shape {buf.shape}")

    def _fill(start: int, stop: int) -> None:
        buf[start:stop] = value

    parallel_for(buf.shape[0], _fill, chunk_size=chunk_size, num_workers=num_workers)
    return buf
