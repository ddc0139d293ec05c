"""Full payment application resync driven by server-side continuation.

Unlike the batch fetch, the client does not hold a list of payments. Each
round trip asks the resync endpoint to process ``batch_size`` payments from
``skip`` and the response says where to continue (``nextSkip``) and whether
the job is ``complete``.

A failed round trip halts the whole resync, whereas a failed single-payment
fetch in ``BatchFetchController`` is only counted and logged. The run can be
resumed from ``current_skip`` afterwards.
"""

import asyncio
import math
from collections import deque
from typing import Any, Protocol

import structlog

from ar_sync.cancellation import CancellationToken
from ar_sync.config import get_settings
from ar_sync.controller import ControllerState
from ar_sync.errors import ConfigurationError, InvalidTransitionError, SupabaseAPIError
from ar_sync.models import BatchLogEntry, ResyncResult, ResyncTotals

logger = structlog.get_logger(__name__)


class ResyncSource(Protocol):
    async def resync_payment_applications(
        self, batch_size: int, skip: int, clear_first: bool = False
    ) -> ResyncResult: ...


def describe_error(error: Exception) -> str:
    """Prefer the server's own error message when the response carried one."""
    if isinstance(error, SupabaseAPIError) and isinstance(error.details, dict):
        detail = error.details.get("error") or error.details.get("message")
        if detail:
            return str(detail)
    return str(error)


class ResyncController:
    """Loops on the resync endpoint until it reports completion."""

    def __init__(
        self,
        source: ResyncSource,
        batch_size: int | None = None,
        delay: float | None = None,
        clear_first: bool = False,
        log_limit: int | None = None,
    ):
        settings = get_settings()
        self._source = source
        self._batch_size = (
            batch_size if batch_size is not None else settings.resync_batch_size
        )
        self._delay = delay if delay is not None else settings.resync_delay
        self._clear_first = clear_first
        if self._batch_size < 1:
            raise ConfigurationError("Batch size must be at least 1")
        log_limit = log_limit if log_limit is not None else settings.log_limit
        if log_limit < 1:
            raise ConfigurationError("Log limit must be at least 1")

        self._current_skip = 0
        self._is_running = False
        self._is_paused = False
        self._completed = False
        self._error: str | None = None
        self._progress: ResyncResult | None = None
        self._totals = ResyncTotals()
        self._batch_logs: deque[BatchLogEntry] = deque(maxlen=log_limit)
        self._batch_count = 0

        self._token: CancellationToken | None = None
        self._run_lock = asyncio.Lock()
        self._logger = logger.bind(component="resync")

    @property
    def state(self) -> ControllerState:
        if self._is_running:
            return ControllerState.RUNNING
        if self._is_paused:
            return ControllerState.PAUSED
        if self._error:
            return ControllerState.FAILED
        if self._completed:
            return ControllerState.COMPLETED
        return ControllerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def current_skip(self) -> int:
        return self._current_skip

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def clear_first(self) -> bool:
        return self._clear_first

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def progress(self) -> ResyncResult | None:
        """The most recent successful batch response."""
        return self._progress

    @property
    def totals(self) -> ResyncTotals:
        return self._totals

    @property
    def batch_logs(self) -> list[BatchLogEntry]:
        return list(self._batch_logs)

    @property
    def progress_percent(self) -> int:
        if not self._progress or not self._progress.total_payments:
            return 0
        total = self._progress.total_payments
        done = (total - self._progress.remaining) / total * 100
        return math.floor(done + 0.5)

    def configure(
        self,
        batch_size: int | None = None,
        start_offset: int | None = None,
        clear_first: bool | None = None,
    ) -> None:
        """Change settings between runs. A non-zero offset resumes a resync manually."""
        if self._is_running or self._run_lock.locked():
            raise InvalidTransitionError("change configuration", "running")
        if batch_size is not None:
            if batch_size < 1:
                raise ConfigurationError("Batch size must be at least 1")
            self._batch_size = batch_size
        if start_offset is not None:
            if start_offset < 0:
                raise ConfigurationError("Starting offset cannot be negative")
            self._current_skip = start_offset
        if clear_first is not None:
            self._clear_first = clear_first

    async def start(self) -> ResyncTotals:
        """Run (or resume) the resync from ``current_skip``.

        Returns the running totals when the loop stops for any reason.
        """
        if self._is_running:
            raise InvalidTransitionError("start", "running")

        async with self._run_lock:
            if self._is_running:
                raise InvalidTransitionError("start", "running")

            token = CancellationToken()
            self._token = token
            self._is_running = True
            self._is_paused = False
            self._completed = False
            self._error = None
            self._batch_count = 0

            if self._current_skip == 0:
                self._batch_logs.clear()
                self._totals = ResyncTotals()
                self._progress = None

            skip = self._current_skip
            is_first_batch = skip == 0
            self._logger.info(
                "resync_starting",
                skip=skip,
                batch_size=self._batch_size,
                clear_first=is_first_batch and self._clear_first,
            )

            try:
                while not token.is_cancelled:
                    self._batch_count += 1
                    result = await self._source.resync_payment_applications(
                        self._batch_size, skip, is_first_batch and self._clear_first
                    )
                    is_first_batch = False

                    if not result.success:
                        self._fail(result.error or result.message or "Unknown error")
                        break

                    next_skip = result.next_skip or skip + self._batch_size
                    if next_skip <= skip:
                        self._logger.warning("next_skip_not_advancing", skip=skip, next_skip=next_skip)
                        next_skip = skip + self._batch_size

                    self._progress = result
                    self._current_skip = next_skip
                    self._record(skip, result)

                    if result.complete:
                        self._completed = True
                        self._is_paused = False
                        self._logger.info("resync_complete", **self._totals_dict())
                        break

                    skip = next_skip
                    await asyncio.sleep(self._delay)
            except Exception as e:
                self._fail(describe_error(e))
            finally:
                self._is_running = False

            return self._totals

    def pause(self) -> None:
        """Stop after the round trip in flight; ``start`` resumes from ``current_skip``."""
        if not self._is_running:
            raise InvalidTransitionError("pause", self.state.value)
        if self._token:
            self._token.cancel()
        self._is_running = False
        self._is_paused = True
        self._logger.info("resync_paused", current_skip=self._current_skip)

    def reset(self) -> None:
        """Back to offset zero with empty totals and history."""
        if self._is_running or self._run_lock.locked():
            raise InvalidTransitionError("reset", "running")
        self._token = None
        self._is_paused = False
        self._completed = False
        self._current_skip = 0
        self._progress = None
        self._batch_logs.clear()
        self._totals = ResyncTotals()
        self._error = None
        self._logger.info("resync_reset")

    def _record(self, skip: int, result: ResyncResult) -> None:
        self._batch_logs.append(
            BatchLogEntry(
                batch=self._batch_count,
                skip=skip,
                processed=result.processed,
                applications=result.total_applications,
                duration_ms=result.duration_ms,
            )
        )
        self._totals = self._totals.add(result)
        self._logger.info(
            "resync_batch_done",
            batch=self._batch_count,
            skip=skip,
            processed=result.processed,
            applications=result.total_applications,
            remaining=result.remaining,
            duration_ms=result.duration_ms,
            errors=len(result.errors),
        )

    def _fail(self, message: str) -> None:
        self._error = message
        self._is_paused = False
        self._logger.error(
            "resync_failed", error=message, batch=self._batch_count, skip=self._current_skip
        )

    def _totals_dict(self) -> dict[str, Any]:
        t = self._totals
        return {
            "processed": t.processed,
            "applications": t.applications,
            "invoices": t.invoices,
            "credit_memos": t.credit_memos,
            "other": t.other,
            "errors": t.errors,
        }
