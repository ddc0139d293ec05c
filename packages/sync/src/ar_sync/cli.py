"""Command line entry point for payment application fetch and resync.

Usage:
    # Fetch applications for the 500 newest payments that have none
    ar-sync fetch --first=500 --batch-size=100 --concurrency=5

    # Full resync, clearing existing applications first
    ar-sync resync --clear-first

    # Resume a resync that stopped at offset 1200
    ar-sync resync --skip=1200

Ctrl-C pauses cooperatively: requests in flight finish, nothing new starts.
"""

import argparse
import asyncio
import contextlib
import signal
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from ar_sync.auth import SessionTokenProvider, StaticTokenProvider, TokenProvider
from ar_sync.clients import SupabaseClient
from ar_sync.config import configure_logging, get_logger, get_settings
from ar_sync.controller import BatchFetchController, ControllerState, default_run_configuration
from ar_sync.errors import ArSyncError
from ar_sync.models import LogEntry
from ar_sync.resync import ResyncController
from ar_sync.selection import PaymentSelection

logger = get_logger(__name__, component="cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ar-sync",
        description="Fetch or resync payment applications from the ERP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser("fetch", help="Fetch applications for payments that have none")
    fetch.add_argument("--limit", type=int, default=None, help="Payments to load (default: FETCH_LIMIT)")
    fetch.add_argument("--date-from", default=None, help="Earliest application date (YYYY-MM-DD)")
    fetch.add_argument("--date-to", default=None, help="Latest application date (YYYY-MM-DD)")
    fetch.add_argument("--balanced-only", action="store_true", help="Only payments with zero balance")
    fetch.add_argument("--search", default=None, help="Filter by reference number or customer id")
    fetch.add_argument("--first", type=int, default=None, help="Select only the first N payments")
    fetch.add_argument("--batch-size", type=int, default=None, help="Payments per batch")
    fetch.add_argument("--concurrency", type=int, default=None, help="Concurrent requests")
    fetch.add_argument("--log-file", type=Path, default=None, help="Write the run log here")

    resync = sub.add_parser("resync", help="Resync all payment applications")
    resync.add_argument("--batch-size", type=int, default=None, help="Payments per server batch")
    resync.add_argument("--skip", type=int, default=0, help="Starting offset")
    resync.add_argument(
        "--clear-first",
        action="store_true",
        help="Clear existing applications before syncing (only when starting at 0)",
    )
    resync.add_argument("--log-file", type=Path, default=None, help="Write the batch history here")

    return parser


def build_token_provider() -> TokenProvider:
    settings = get_settings()
    anon_key = settings.supabase_anon_key.get_secret_value()
    if settings.supabase_email and settings.supabase_password:
        return SessionTokenProvider(
            settings.supabase_url,
            anon_key,
            settings.supabase_email,
            settings.supabase_password.get_secret_value(),
            timeout=settings.supabase_timeout,
        )
    return StaticTokenProvider(anon_key)


def print_log_entry(entry: LogEntry) -> None:
    print(entry.to_text())


def _install_pause_handler(pause: Callable[[], None]) -> None:
    loop = asyncio.get_running_loop()

    def handler() -> None:
        with contextlib.suppress(ArSyncError):
            pause()

    # Signal handlers are not available on every platform
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, handler)


async def run_fetch(args: argparse.Namespace, client: SupabaseClient) -> int:
    payments = await client.list_payments_without_applications(
        limit=args.limit,
        date_from=args.date_from,
        date_to=args.date_to,
        balanced_only=args.balanced_only,
    )
    selection = PaymentSelection(payments)
    if args.first is not None:
        selection.select_first(args.first, args.search)
    else:
        selection.select_all(args.search)
    print(f"Loaded {len(payments)} payments without applications, {len(selection)} selected")

    changes: dict[str, int] = {}
    if args.batch_size is not None:
        changes["batch_size"] = args.batch_size
    if args.concurrency is not None:
        changes["concurrency"] = args.concurrency
    controller = BatchFetchController(client, config=default_run_configuration())
    if changes:
        controller.configure(**changes)
    controller.tracker.add_log_listener(print_log_entry)
    _install_pause_handler(controller.pause)

    await controller.start(selection.selected_items())

    if args.log_file:
        args.log_file.write_text(controller.tracker.export_text() + "\n", encoding="utf-8")

    state = controller.tracker.state
    print(
        f"{controller.state.value}: {state.processed}/{state.total} processed, "
        f"{state.successful} successful, {state.failed} failed"
    )
    return 0


async def run_resync(args: argparse.Namespace, client: SupabaseClient) -> int:
    controller = ResyncController(client, batch_size=args.batch_size, clear_first=args.clear_first)
    controller.configure(start_offset=args.skip)
    _install_pause_handler(controller.pause)

    totals = await controller.start()

    if args.log_file:
        lines = [
            f"[{entry.timestamp:%H:%M:%S}] batch {entry.batch} skip={entry.skip} "
            f"processed={entry.processed} applications={entry.applications} "
            f"duration_ms={entry.duration_ms}"
            for entry in controller.batch_logs
        ]
        args.log_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

    print(
        f"{controller.state.value}: {totals.processed} payments, "
        f"{totals.applications} applications "
        f"({totals.invoices} invoices, {totals.credit_memos} credit memos, {totals.other} other), "
        f"{totals.errors} errors, {controller.progress_percent}% done"
    )
    if controller.state is ControllerState.FAILED:
        print(f"Error: {controller.error}", file=sys.stderr)
        print(f"Resume with: ar-sync resync --skip={controller.current_skip}", file=sys.stderr)
        return 1
    if controller.state is ControllerState.PAUSED:
        print(f"Resume with: ar-sync resync --skip={controller.current_skip}")
    return 0


async def run(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    provider = build_token_provider()
    try:
        async with SupabaseClient(token_provider=provider) as client:
            if args.command == "fetch":
                return await run_fetch(args, client)
            return await run_resync(args, client)
    except ArSyncError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if isinstance(provider, SessionTokenProvider):
            await provider.close()


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
