"""
Batch driving for track resolution.

Everything here runs on one event loop: concurrency is cooperative and
bounded by a semaphore, never by threads. Results always come back in input
order, and a failing item is recorded rather than allowed to abort the run.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from .errors import TransferCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation flag checked between tiers, items and batches."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TransferCancelled(self.reason or "cancelled")


@dataclass
class ItemResult(Generic[T, R]):
    success: bool
    item: T
    index: int
    result: Optional[R] = None
    error: Optional[BaseException] = None


@dataclass
class ItemProgress:
    current: int
    total: int
    item: Any
    result: Any = None


@dataclass
class BatchProgress:
    current_batch: int
    total_batches: int
    processed_items: int
    total_items: int


class ProgressStream:
    """Async iterator of progress events.

    ``publish`` has the shape of a progress callback, so the stream can be
    handed to the executor directly while a UI consumes it with
    ``async for event in stream``. Iteration ends after ``close``.
    """

    _DONE = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, event: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._DONE)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        event = await self._queue.get()
        if event is self._DONE:
            raise StopAsyncIteration
        return event


async def process_in_parallel(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    max_concurrent: int = 10,
    on_progress: Optional[Callable[[ItemProgress], None]] = None,
    on_error: Optional[Callable[[T, BaseException, int], None]] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[ItemResult[T, R]]:
    """Run ``processor`` over ``items`` with at most ``max_concurrent`` in flight.

    Items not yet started when ``cancel`` trips are recorded as failures
    carrying a TransferCancelled error.
    """
    total = len(items)
    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    completed = 0

    async def run_one(index: int, item: T) -> ItemResult[T, R]:
        nonlocal completed
        async with semaphore:
            try:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                result = await processor(item)
                out = ItemResult(success=True, item=item, index=index, result=result)
            except Exception as e:
                if not isinstance(e, TransferCancelled):
                    logger.warning("Item %d failed: %s", index, e)
                if on_error:
                    on_error(item, e, index)
                out = ItemResult(success=False, item=item, index=index, error=e)
        completed += 1
        if on_progress:
            on_progress(ItemProgress(current=completed, total=total, item=item, result=out.result))
        return out

    return list(await asyncio.gather(*(run_one(i, item) for i, item in enumerate(items))))


async def process_in_batches(
    items: Sequence[T],
    batch_processor: Callable[[List[T]], Awaitable[List[R]]],
    batch_size: int = 50,
    delay: float = 0.1,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[R]:
    """Feed fixed-size batches to ``batch_processor`` one at a time.

    ``delay`` (seconds) is slept between batches. An exception raised by the
    batch processor propagates to the caller.
    """
    batch_size = max(1, batch_size)
    total = len(items)
    total_batches = (total + batch_size - 1) // batch_size
    results: List[R] = []
    for n, start in enumerate(range(0, total, batch_size), 1):
        if cancel is not None:
            cancel.raise_if_cancelled()
        batch = list(items[start:start + batch_size])
        results.extend(await batch_processor(batch))
        if on_progress:
            on_progress(
                BatchProgress(
                    current_batch=n,
                    total_batches=total_batches,
                    processed_items=min(start + batch_size, total),
                    total_items=total,
                )
            )
        if n < total_batches and delay > 0:
            await asyncio.sleep(delay)
    return results


async def retry_with_backoff(
    operation: Callable[[], Awaitable[R]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> R:
    """Call ``operation`` up to ``max_retries + 1`` times; re-raise the last error.

    ``retry_if`` limits retries to errors it accepts; others raise at once.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransferCancelled:
            raise
        except Exception as e:
            if attempt >= max_retries or (retry_if is not None and not retry_if(e)):
                raise
            wait = min(initial_delay * backoff_multiplier ** attempt, max_delay)
            attempt += 1
            if on_retry:
                on_retry(e, attempt, wait)
            logger.debug("Retry %d/%d in %.3fs after %s", attempt, max_retries, wait, e)
            await asyncio.sleep(wait)
