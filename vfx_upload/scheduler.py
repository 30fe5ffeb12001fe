"""Bounded-concurrency dispatch of one operation per item."""
from __future__ import annotations

import concurrent.futures
import logging
from collections import deque
from typing import Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3

T = TypeVar("T")
CompletionCallback = Callable[[T, int, int], None]


def run_bounded(
    items: Sequence[T],
    operation: Callable[[T], object],
    *,
    max_workers: int = DEFAULT_MAX_CONCURRENT,
    on_complete: Optional[CompletionCallback] = None,
) -> int:
    """Run *operation* over *items* with at most *max_workers* in flight.

    A new item is dispatched as soon as one finishes. ``on_complete(item,
    completed, total)`` fires once per item in completion order. An item whose
    operation raises is logged and still counts as completed; the remaining
    items keep running. Returns the number of completed items.
    """

    total = len(items)
    if total == 0:
        return 0
    max_workers = max(1, int(max_workers))

    queue = deque(items)
    futures = {}
    completed = 0

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        while queue or futures:
            # Launch new work while capacity is available
            while queue and len(futures) < max_workers:
                item = queue.popleft()
                futures[executor.submit(operation, item)] = item

            done, _ = concurrent.futures.wait(
                futures.keys(),
                return_when=concurrent.futures.FIRST_COMPLETED,
            )

            for future in done:
                item = futures.pop(future)
                try:
                    future.result()
                except Exception:  # noqa: BLE001
                    logger.exception("Operation failed for %s", item)

                completed += 1
                if on_complete is not None:
                    on_complete(item, completed, total)

    return completed
