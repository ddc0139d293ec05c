"""Batch scheduler that drives per-payment fetches in paced groups."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from ar_sync.cancellation import CancellationToken
from ar_sync.models import RunConfiguration, RunSummary

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    if size < 1:
        raise ValueError("Chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


def plan_batches(count: int, batch_size: int, concurrency: int) -> list[list[int]]:
    """Group sizes for each outer batch when scheduling ``count`` items.

    For example 23 items, batch size 10, concurrency 5 gives
    ``[[5, 5], [5, 5], [3]]``.
    """
    batches = chunk(range(count), batch_size)
    return [[len(group) for group in chunk(batch, concurrency)] for batch in batches]


class BatchScheduler:
    """Runs a worker over work items in outer batches and concurrent groups.

    The scheduler:
    1. Splits items into outer batches of ``batch_size``
    2. Splits each batch into groups of ``concurrency`` launched together
    3. Waits for a whole group to settle before starting the next
    4. Sleeps ``group_delay`` after each group and ``batch_delay`` between batches
    5. Stops launching work once the cancellation token is set
    """

    def __init__(self, config: RunConfiguration):
        self.config = config
        self._logger = logger.bind(component="scheduler")

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[bool]],
        token: CancellationToken,
        on_batch_start: Callable[[int, int, int], None] | None = None,
    ) -> RunSummary:
        """Run ``worker`` over ``items``.

        Args:
            items: Work items in dispatch order.
            worker: Coroutine returning True on success. Must not raise.
            token: Checked before every outer batch and concurrent group.
            on_batch_start: Called with (batch number, total batches, batch size).

        Returns:
            Summary of what this pass processed.
        """
        config = self.config
        batches = chunk(items, config.batch_size)
        started = time.monotonic()
        successful = 0
        failed = 0
        cancelled = False

        self._logger.info(
            "run_starting",
            items=len(items),
            batches=len(batches),
            batch_size=config.batch_size,
            concurrency=config.concurrency,
        )

        for batch_index, batch in enumerate(batches):
            if token.is_cancelled:
                cancelled = True
                break

            if on_batch_start:
                on_batch_start(batch_index + 1, len(batches), len(batch))

            for group in chunk(batch, config.concurrency):
                if token.is_cancelled:
                    cancelled = True
                    break

                results = await asyncio.gather(*(worker(item) for item in group))
                for ok in results:
                    if ok:
                        successful += 1
                    else:
                        failed += 1

                if config.group_delay:
                    await asyncio.sleep(config.group_delay)

            if cancelled:
                break

            is_last = batch_index == len(batches) - 1
            if not is_last and not token.is_cancelled and config.batch_delay:
                await asyncio.sleep(config.batch_delay)

        elapsed = time.monotonic() - started
        summary = RunSummary(
            processed=successful + failed,
            successful=successful,
            failed=failed,
            elapsed_seconds=elapsed,
            cancelled=cancelled,
        )
        self._logger.info(
            "run_ended",
            processed=summary.processed,
            successful=successful,
            failed=failed,
            elapsed=round(elapsed, 3),
            cancelled=cancelled,
        )
        return summary
