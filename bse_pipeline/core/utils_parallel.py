"""Parallel execution helpers for per-pixel stages."""
from __future__ import annotations

import concurrent.futures
import logging
from typing import Callable, List, Optional, Tuple

LOGGER = logging.getLogger("bse_pipeline.parallel")

RowRange = Tuple[int, int]


def create_thread_pool(max_workers: Optional[int] = None) -> concurrent.futures.ThreadPoolExecutor:
    """Create a thread pool executor with sane defaults."""

    return concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bse-rows")


def split_rows(height: int, chunks: int) -> List[RowRange]:
    """Split ``range(height)`` into at most *chunks* contiguous ``(start, stop)`` bands."""

    chunks = max(1, min(int(chunks), height)) if height > 0 else 1
    bounds = [round(i * height / chunks) for i in range(chunks + 1)]
    return [(bounds[i], bounds[i + 1]) for i in range(chunks) if bounds[i + 1] > bounds[i]]


def map_row_chunks(
    function: Callable[[int, int], None],
    height: int,
    *,
    max_workers: Optional[int] = None,
) -> None:
    """Run ``function(start, stop)`` over row bands, concurrently when *max_workers* > 1.

    Bands are disjoint so workers may write into a shared output array. The
    first worker exception is re-raised in the caller.
    """

    if height <= 0:
        return
    if not max_workers or max_workers <= 1:
        function(0, height)
        return
    bands = split_rows(height, max_workers * 2)
    LOGGER.debug("Dispatching %d row bands to %d workers", len(bands), max_workers)
    with create_thread_pool(max_workers=max_workers) as executor:
        futures = [executor.submit(function, start, stop) for start, stop in bands]
        for future in concurrent.futures.as_completed(futures):
            future.result()


__all__ = ["create_thread_pool", "map_row_chunks", "split_rows"]
