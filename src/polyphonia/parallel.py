"""Order-stable thread-pool helpers."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _call_indexed(func: Callable[[T], R], indexed: Tuple[int, T]) -> Tuple[int, R]:
    idx, item = indexed
    return idx, func(item)


def parallel_map(func: Callable[[T], R], items: Iterable[T], *, workers: int = 1) -> List[R]:
    """Apply ``func`` to every item; output order always follows input order.

    The first exception raised by any task cancels tasks that have not started
    and is re-raised in the caller.
    """
    seq = list(items)
    if not seq:
        return []

    jobs = max(1, int(workers))
    if jobs == 1 or len(seq) == 1:
        return [func(item) for item in seq]

    logger.debug("parallel_map: n_items=%d workers=%d", len(seq), jobs)
    ex = ThreadPoolExecutor(max_workers=jobs)
    try:
        futures = [ex.submit(_call_indexed, func, pair) for pair in enumerate(seq)]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for fut in done:
            exc = fut.exception()
            if exc is not None:
                raise exc
        rows = [fut.result() for fut in futures]
    finally:
        ex.shutdown(wait=True, cancel_futures=True)

    rows.sort(key=lambda x: x[0])
    return [row for _, row in rows]
