"""Command-line entry point: print the fleet view, optionally keep it refreshing."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Sequence

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED

from fleetview.config import settings
from fleetview.logging_config import setup_logging
from fleetview.models import CEILING_CHANNELS, SORT_KEYS, SortDirection
from fleetview.view.reconcile import RowContainer
from fleetview.worker.orchestrator import Orchestrator, build_orchestrator
from fleetview.worker.scheduler import setup_scheduler

logger = logging.getLogger(__name__)

COLUMNS = (
    ("Region", "region"),
    ("Provider", "provider"),
    ("IPv4", "ip"),
    ("SID", "sid"),
    ("CPU", "cpu_load"),
    ("IO", "io_wait"),
    ("NIC", "nic_error"),
    ("Network", "network"),
    ("Congestion", "congestion"),
)


def format_table(container: RowContainer) -> str:
    """Render the reconciled rows (or the placeholder) as a plain text table."""
    if not container.rows:
        return container.placeholder or ""

    header = [title for title, _ in COLUMNS]
    body = [[getattr(row.cells, attr) for _, attr in COLUMNS] for row in container.rows]
    widths = [max(len(line[i]) for line in [header] + body) for i in range(len(COLUMNS))]

    def fmt(line: Sequence[str]) -> str:
        return "  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip()

    lines = [fmt(header), fmt(["-" * width for width in widths])]
    lines.extend(fmt(line) for line in body)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetview",
        description="Live, filterable view of the relay node fleet",
    )
    parser.add_argument("--brand", default=None, help="Provider brand to keep (default: all)")
    parser.add_argument("--keyword", default=None, help="Substring matched against host, ip, region and provider")
    parser.add_argument(
        "--country",
        action="append",
        default=None,
        help="Country code to keep; repeat for several",
    )
    for name in CEILING_CHANNELS:
        parser.add_argument(
            f"--{name.replace('_', '-')}",
            dest=name,
            type=float,
            default=None,
            help="Upper bound for the channel; negative disables it",
        )
    parser.add_argument("--sort", choices=SORT_KEYS, default=None, help="Sort key")
    parser.add_argument("--desc", action="store_true", help="Sort descending")
    parser.add_argument("--best", action="store_true", help="Only zero-load nodes, by traffic")
    parser.add_argument("--reset", action="store_true", help="Clear saved filters before applying options")
    parser.add_argument("--lang", default=None, help="Label language")
    parser.add_argument("--watch", action="store_true", help="Keep refreshing and reprinting")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.refresh_interval_minutes,
        help=f"Refresh interval in minutes for --watch (default: {settings.refresh_interval_minutes})",
    )
    return parser


def filter_changes(args: argparse.Namespace) -> dict:
    changes = {}
    if args.brand is not None:
        changes["brand"] = args.brand
    if args.keyword is not None:
        changes["keyword"] = args.keyword
    if args.country is not None:
        changes["country_codes"] = frozenset(code.upper() for code in args.country)
    for name in CEILING_CHANNELS:
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    return changes


async def apply_arguments(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    if args.reset:
        await orchestrator.reset_filters()
    if args.lang:
        await orchestrator.set_language(args.lang)
    changes = filter_changes(args)
    if changes:
        await orchestrator.apply_filter(**changes)
    if args.sort:
        direction = SortDirection.DESC if args.desc else SortDirection.ASC
        await orchestrator.apply_sort(args.sort, direction=direction)
    if args.best:
        await orchestrator.apply_best_server_preset()


async def run_cli(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator()
    scheduler = None
    try:
        await orchestrator.bootstrap()
        await apply_arguments(orchestrator, args)
        print(format_table(orchestrator.container), flush=True)

        if not args.watch:
            return 1 if orchestrator.last_refresh_error and not orchestrator.tables.committed else 0

        scheduler = setup_scheduler(orchestrator, args.interval)

        def on_refresh(event):
            if event.exception:
                logger.error(f"Scheduled refresh crashed: {event.exception}")
                return
            print(format_table(orchestrator.container), flush=True)

        scheduler.add_listener(on_refresh, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        scheduler.start()
        logger.info("Watching for updates, Ctrl+C to stop")
        await asyncio.Event().wait()
        return 0
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await orchestrator.close()


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        return asyncio.run(run_cli(args))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0


if __name__ == "__main__":
    sys.exit(run())
