"""Start/pause/resume/reset controller for batch application fetches."""

import asyncio
import math
from collections.abc import Iterable
from dataclasses import replace
from enum import Enum
from typing import Any

import structlog

from ar_sync.cancellation import CancellationToken
from ar_sync.config import get_settings
from ar_sync.errors import ConfigurationError, InvalidTransitionError
from ar_sync.fetcher import ApplicationFetcher, ApplicationSource
from ar_sync.models import LogSeverity, RunConfiguration, RunSummary, WorkItem
from ar_sync.progress import ProgressTracker, RunEvent, RunEventType
from ar_sync.scheduler import BatchScheduler

logger = structlog.get_logger(__name__)


class ControllerState(str, Enum):
    """Lifecycle of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


def default_run_configuration() -> RunConfiguration:
    settings = get_settings()
    return RunConfiguration(
        batch_size=settings.batch_size,
        concurrency=settings.concurrency,
        group_delay=settings.group_delay,
        batch_delay=settings.batch_delay,
    )


class BatchFetchController:
    """Fetches applications for a selected set of payments.

    Usage:
        controller = BatchFetchController(client)
        task = asyncio.create_task(controller.start(payments))

        controller.pause()          # stops before the next concurrent group
        await task
        await controller.resume()   # continues with the unprocessed payments

    Pausing is coarse: requests already in flight finish and are counted.
    Completed payments leave the remaining work set as they settle, so a
    resume never fetches them again. Progress lives in memory only.
    """

    def __init__(
        self,
        source: ApplicationSource,
        config: RunConfiguration | None = None,
        tracker: ProgressTracker | None = None,
    ):
        self._config = config or default_run_configuration()
        self.tracker = tracker or ProgressTracker(log_limit=get_settings().log_limit)
        self._fetcher = ApplicationFetcher(source, self.tracker)

        self._remaining: dict[str, WorkItem] = {}
        self._token: CancellationToken | None = None
        self._run_lock = asyncio.Lock()

        self._logger = logger.bind(component="batch_fetch")

    @property
    def config(self) -> RunConfiguration:
        return self._config

    @property
    def state(self) -> ControllerState:
        run = self.tracker.state
        if run.is_running:
            return ControllerState.RUNNING
        if run.is_paused:
            return ControllerState.PAUSED
        if run.total > 0 and run.processed == run.total:
            return ControllerState.COMPLETED
        return ControllerState.IDLE

    @property
    def remaining_items(self) -> list[WorkItem]:
        """Payments of the current run that have not settled yet."""
        return list(self._remaining.values())

    def configure(self, **changes: Any) -> RunConfiguration:
        """Change batch_size, concurrency or delays between runs."""
        if self.state is ControllerState.RUNNING or self._run_lock.locked():
            raise InvalidTransitionError("change configuration", "running")
        self._config = replace(self._config, **changes)
        return self._config

    async def start(self, items: Iterable[WorkItem]) -> RunSummary:
        """Begin a fresh run over ``items``.

        Raises:
            ConfigurationError: If no payments were selected.
            InvalidTransitionError: If a run is already in progress.
        """
        if self.state is ControllerState.RUNNING:
            raise InvalidTransitionError("start", "running")

        selection = {item.id: item for item in items}
        if not selection:
            raise ConfigurationError("Please select at least one payment")

        async with self._run_lock:
            if self.state is ControllerState.RUNNING:
                raise InvalidTransitionError("start", "running")

            total = len(selection)
            self._remaining = selection
            self.tracker.clear_logs()
            self.tracker.dispatch(
                RunEvent(
                    RunEventType.RUN_STARTED,
                    total=total,
                    total_batches=math.ceil(total / self._config.batch_size),
                )
            )
            self.tracker.log(
                f"Starting batch fetch for {total} payments "
                f"({self._config.batch_size} at a time, "
                f"{self._config.concurrency} concurrent requests)"
            )
            return await self._run()

    def pause(self) -> None:
        """Stop launching new requests; in-flight ones still complete."""
        if self.state is not ControllerState.RUNNING:
            raise InvalidTransitionError("pause", self.state.value)
        if self._token:
            self._token.cancel()
        self.tracker.dispatch(RunEvent(RunEventType.RUN_PAUSED))
        self.tracker.log("Batch paused")

    async def resume(self) -> RunSummary:
        """Continue a paused run with the payments that have not settled."""
        if self.state is not ControllerState.PAUSED:
            raise InvalidTransitionError("resume", self.state.value)

        # Waits for a paused loop to drain its in-flight group
        async with self._run_lock:
            if self.state is not ControllerState.PAUSED:
                raise InvalidTransitionError("resume", self.state.value)
            self.tracker.dispatch(RunEvent(RunEventType.RUN_RESUMED))
            self.tracker.log(f"Resuming with {len(self._remaining)} payments remaining")
            return await self._run()

    def reset(self) -> None:
        """Clear counters, logs and remaining work."""
        if self.state is ControllerState.RUNNING or self._run_lock.locked():
            raise InvalidTransitionError("reset", "running")
        self._remaining = {}
        self._token = None
        self.tracker.dispatch(RunEvent(RunEventType.RUN_RESET))
        self._logger.info("run_reset")

    async def _run(self) -> RunSummary:
        token = CancellationToken()
        self._token = token
        scheduler = BatchScheduler(self._config)

        try:
            summary = await scheduler.run(
                list(self._remaining.values()),
                self._process,
                token,
                on_batch_start=self._on_batch_start,
            )
        except BaseException:
            # Leave an interrupted run resumable
            if self.tracker.state.is_running:
                self.tracker.dispatch(RunEvent(RunEventType.RUN_PAUSED))
            raise

        run = self.tracker.state
        if self._remaining:
            self.tracker.log(
                f"Stopped after {run.processed} of {run.total} payments "
                f"({run.remaining} remaining)"
            )
            self._logger.info("run_stopped", **run.to_dict())
            return summary

        self.tracker.dispatch(RunEvent(RunEventType.RUN_FINISHED))
        self.tracker.log(
            f"Batch fetch completed in {summary.elapsed_seconds:.1f}s! "
            f"Success: {run.successful}, Failed: {run.failed} | "
            f"Speed: {summary.items_per_second:.1f} payments/sec",
            LogSeverity.SUCCESS,
        )
        return summary

    def _on_batch_start(self, number: int, total_batches: int, size: int) -> None:
        self.tracker.dispatch(
            RunEvent(RunEventType.BATCH_STARTED, batch=number, total_batches=total_batches)
        )
        self.tracker.log(f"Processing batch {number} of {total_batches} ({size} payments)")

    async def _process(self, item: WorkItem) -> bool:
        self.tracker.dispatch(
            RunEvent(RunEventType.ITEM_STARTED, reference=item.reference_number)
        )
        success = await self._fetcher.fetch(item)
        self._remaining.pop(item.id, None)
        self.tracker.dispatch(
            RunEvent(
                RunEventType.ITEM_COMPLETED,
                reference=item.reference_number,
                success=success,
            )
        )
        return success
