# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Batching - sequential batches with bounded fan-out inside each batch
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class BatchOutcome:
    index: int
    total: int
    results: List[Tuple[Any, Any]] = field(default_factory=list)
    errors: List[Tuple[Any, BaseException]] = field(default_factory=list)


def run_batched(
    items: Sequence[T],
    worker: Callable[[T], Any],
    batch_size: int,
    delay: float = 0.0,
    max_workers: Optional[int] = None,
    label: str = "items"
) -> Iterator[BatchOutcome]:
    """
    Run ``worker`` over ``items`` batch by batch

    Items inside a batch run concurrently; batches run one after another
    with ``delay`` seconds between them. A failing item is recorded in the
    batch's ``errors`` and never stops its siblings. Each outcome is yielded
    as soon as its batch finishes so callers can commit per batch.
    """
    batches = chunk(items, batch_size)

    for index, batch in enumerate(batches):
        if index > 0 and delay > 0:
            time.sleep(delay)

        logger.info(f"Processing batch {index + 1}/{len(batches)} ({len(batch)} {label})")
        outcome = BatchOutcome(index=index, total=len(batches))

        with ThreadPoolExecutor(max_workers=max_workers or len(batch)) as pool:
            futures = [(item, pool.submit(worker, item)) for item in batch]
            for item, future in futures:
                try:
                    outcome.results.append((item, future.result()))
                except Exception as e:
                    logger.error(f"❌ Batch item failed: {type(e).__name__}: {e}")
                    outcome.errors.append((item, e))

        yield outcome
