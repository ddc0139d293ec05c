"""ar-sync - paced, resumable payment application fetch and resync."""

__version__ = "0.1.0"

from ar_sync.auth import SessionTokenProvider, StaticTokenProvider, TokenProvider
from ar_sync.cancellation import CancellationToken
from ar_sync.clients import SupabaseClient
from ar_sync.config import configure_logging, get_settings
from ar_sync.controller import BatchFetchController, ControllerState
from ar_sync.errors import (
    ArSyncError,
    AuthenticationError,
    ConfigurationError,
    InvalidTransitionError,
    RateLimitError,
    SupabaseAPIError,
)
from ar_sync.fetcher import ApplicationFetcher
from ar_sync.models import (
    Application,
    LogEntry,
    LogSeverity,
    ResyncResult,
    ResyncTotals,
    RunConfiguration,
    RunSummary,
    WorkItem,
)
from ar_sync.progress import ProgressTracker, RunEvent, RunEventType, RunState
from ar_sync.resync import ResyncController
from ar_sync.scheduler import BatchScheduler, plan_batches
from ar_sync.selection import PaymentSelection

__all__ = [
    # Version
    "__version__",
    # Controllers
    "BatchFetchController",
    "ResyncController",
    "ControllerState",
    # Scheduling
    "BatchScheduler",
    "CancellationToken",
    "plan_batches",
    # Progress
    "ProgressTracker",
    "RunEvent",
    "RunEventType",
    "RunState",
    # Fetching
    "ApplicationFetcher",
    "PaymentSelection",
    # Clients & auth
    "SupabaseClient",
    "TokenProvider",
    "StaticTokenProvider",
    "SessionTokenProvider",
    # Models
    "Application",
    "LogEntry",
    "LogSeverity",
    "ResyncResult",
    "ResyncTotals",
    "RunConfiguration",
    "RunSummary",
    "WorkItem",
    # Errors
    "ArSyncError",
    "AuthenticationError",
    "ConfigurationError",
    "InvalidTransitionError",
    "RateLimitError",
    "SupabaseAPIError",
    # Config
    "get_settings",
    "configure_logging",
]
