"""Fetches the applications of a single payment and classifies the outcome."""

from typing import Any, Protocol

import structlog

from ar_sync.models import Application, LogSeverity, WorkItem
from ar_sync.progress import ProgressTracker

logger = structlog.get_logger(__name__)


class ApplicationSource(Protocol):
    async def fetch_payment_applications(
        self, reference_number: str, doc_type: str | None = None
    ) -> dict[str, Any]: ...


class MalformedResponseError(Exception):
    """The endpoint answered 2xx but the body is not a usable result."""


def parse_applications(body: Any) -> list[Application]:
    """Extract applications from a fetch response body.

    A missing ``applications`` key means no applications were found.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError("response body is not an object")
    raw = body.get("applications")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedResponseError("applications is not a list")
    return [Application.from_dict(app) for app in raw if isinstance(app, dict)]


class ApplicationFetcher:
    """Remote fetch for one payment at a time.

    ``fetch`` never raises: every failure becomes ``False`` plus an error
    line in the operator log, so a run always moves on to the next payment.
    """

    def __init__(self, source: ApplicationSource, tracker: ProgressTracker):
        self._source = source
        self._tracker = tracker
        self._logger = logger.bind(component="fetcher")

    async def fetch(self, item: WorkItem) -> bool:
        ref = item.reference_number
        amount = f"${item.amount:.2f}" if item.amount is not None else "N/A"
        self._tracker.log(
            f"Fetching applications for payment: {ref} "
            f"(Customer: {item.customer_id or 'N/A'}, Amount: {amount})"
        )
        try:
            body = await self._source.fetch_payment_applications(ref, item.doc_type)
            applications = parse_applications(body)
        except Exception as e:
            self._logger.warning("fetch_failed", reference=ref, error=str(e))
            self._tracker.log(f"{ref}: {e}", LogSeverity.ERROR)
            return False

        if applications:
            self._tracker.log(
                f"{ref}: Fetched {len(applications)} applications", LogSeverity.SUCCESS
            )
            for index, app in enumerate(applications, start=1):
                self._tracker.log(app.describe(index))
        else:
            self._tracker.log(f"{ref}: No applications found")
        return True
