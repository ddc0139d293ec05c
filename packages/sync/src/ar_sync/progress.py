"""Run progress state and the operator log.

Every change to ``RunState`` goes through ``reduce``. Settled requests emit
``RunEvent``s and ``ProgressTracker.dispatch`` applies them one at a time, so
concurrent completions only ever increment counters.
"""

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

import structlog

from ar_sync.models import LogEntry, LogSeverity

logger = structlog.get_logger(__name__)


class RunEventType(str, Enum):
    """Things that happen to a batch fetch run."""

    RUN_STARTED = "run.started"
    BATCH_STARTED = "batch.started"
    ITEM_STARTED = "item.started"
    ITEM_COMPLETED = "item.completed"
    RUN_PAUSED = "run.paused"
    RUN_RESUMED = "run.resumed"
    RUN_FINISHED = "run.finished"
    RUN_RESET = "run.reset"


@dataclass(frozen=True)
class RunEvent:
    """An event emitted by the scheduler or controller."""

    event_type: RunEventType
    reference: str | None = None
    success: bool | None = None
    total: int = 0
    batch: int = 0
    total_batches: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class RunState:
    """Counters and flags for the active run."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    current_item: str | None = None
    is_running: bool = False
    is_paused: bool = False
    current_batch: int = 0
    total_batches: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.processed

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "current_item": self.current_item,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
        }


def reduce(state: RunState, event: RunEvent) -> RunState:
    """Apply one event to a run state and return the new state."""
    kind = event.event_type

    if kind is RunEventType.RUN_STARTED:
        return RunState(
            total=event.total,
            is_running=True,
            total_batches=event.total_batches,
        )
    if kind is RunEventType.BATCH_STARTED:
        return replace(state, current_batch=event.batch, total_batches=event.total_batches)
    if kind is RunEventType.ITEM_STARTED:
        return replace(state, current_item=event.reference)
    if kind is RunEventType.ITEM_COMPLETED:
        if state.processed >= state.total:
            logger.warning("completion_past_total", reference=event.reference)
            return state
        current = None if state.current_item == event.reference else state.current_item
        return replace(
            state,
            processed=state.processed + 1,
            successful=state.successful + (1 if event.success else 0),
            failed=state.failed + (0 if event.success else 1),
            current_item=current,
        )
    if kind is RunEventType.RUN_PAUSED:
        return replace(state, is_running=False, is_paused=True)
    if kind is RunEventType.RUN_RESUMED:
        return replace(state, is_running=True, is_paused=False)
    if kind is RunEventType.RUN_FINISHED:
        return replace(state, is_running=False, is_paused=False, current_item=None)
    if kind is RunEventType.RUN_RESET:
        return RunState()
    return state


class ProgressTracker:
    """Holds the current ``RunState`` and the bounded operator log."""

    def __init__(self, log_limit: int = 5000):
        self._state = RunState()
        self._logs: deque[LogEntry] = deque(maxlen=log_limit)
        self._listeners: list[Callable[[RunState], None]] = []
        self._log_listeners: list[Callable[[LogEntry], None]] = []
        self._logger = logger.bind(component="progress")

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def logs(self) -> list[LogEntry]:
        return list(self._logs)

    @property
    def log_limit(self) -> int:
        return self._logs.maxlen or 0

    def add_listener(self, listener: Callable[[RunState], None]) -> None:
        """Call ``listener`` with the new state after every dispatched event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[RunState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_log_listener(self, listener: Callable[[LogEntry], None]) -> None:
        """Call ``listener`` with every new log entry."""
        self._log_listeners.append(listener)

    def dispatch(self, event: RunEvent) -> RunState:
        """Apply an event; the only place run state changes."""
        self._state = reduce(self._state, event)
        if event.event_type is RunEventType.RUN_RESET:
            self._logs.clear()
        for listener in self._listeners:
            listener(self._state)
        return self._state

    def log(self, message: str, severity: LogSeverity = LogSeverity.INFO) -> LogEntry:
        """Append a line to the operator log."""
        entry = LogEntry(message=message, severity=severity)
        self._logs.append(entry)
        if severity is LogSeverity.ERROR:
            self._logger.warning("operator_log", message=message, severity=severity.value)
        else:
            self._logger.debug("operator_log", message=message, severity=severity.value)
        for listener in self._log_listeners:
            listener(entry)
        return entry

    def clear_logs(self) -> None:
        self._logs.clear()

    def export_text(self) -> str:
        """Render the log as plain text, one entry per line."""
        return "\n".join(entry.to_text() for entry in self._logs)
