"""CLI entrypoint for the rentwatcher agent."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from rentwatcher.config import CrawlerConfig
from rentwatcher.db import Database, resolve_sqlite_path
from rentwatcher.errors import RentWatcherError
from rentwatcher.notifications import (
    CHANGED_MODES,
    FILTERED_MODES,
    NOTIFY_MODES,
    NotificationPolicy,
    build_notifier_from_env,
)
from rentwatcher.runner import RentWatcherRunner

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="591 rental listing monitor")
    parser.add_argument("--init", action="store_true", help="initialize storage and exit")
    parser.add_argument(
        "--run",
        action="store_true",
        help="execute one monitoring cycle",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="crawl and classify without sending notifications or saving results",
    )
    parser.add_argument(
        "--url",
        default=os.getenv("TARGET_URL", ""),
        help="591 search URL to monitor (overrides TARGET_URL env var)",
    )
    parser.add_argument(
        "--max-latest",
        type=positive_int,
        default=None,
        help="notify about the latest N listings instead of only new ones",
    )
    parser.add_argument("--notify-mode", choices=NOTIFY_MODES, default="filtered")
    parser.add_argument("--filtered-mode", choices=FILTERED_MODES, default="silent")
    parser.add_argument("--changed-mode", choices=CHANGED_MODES, default="skip")
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        help="write the stored rentals of this query to an .xlsx file after the run",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = CrawlerConfig.from_env()
    except RentWatcherError as exc:
        logger.error("%s", exc)
        return 2

    database_url = os.getenv("DATABASE_URL", "sqlite:///rentwatcher.db")
    database = Database(path=resolve_sqlite_path(database_url))

    if args.init:
        logger.info("Initializing database at %s", database.path)
        database.initialize()
        return 0

    if not args.run:
        parser.print_help()
        return 1
    if not args.url:
        parser.error("--url (or TARGET_URL) is required with --run")

    database.initialize()
    runner = RentWatcherRunner(
        store=database,
        notifier=build_notifier_from_env(),
        config=config,
        policy=NotificationPolicy(
            notify_mode=args.notify_mode,
            filtered_mode=args.filtered_mode,
            changed_mode=args.changed_mode,
        ),
    )

    try:
        summary = runner.run(args.url, max_latest=args.max_latest, dry_run=args.dry_run)
    except RentWatcherError as exc:
        logger.error("Monitoring cycle failed: %s", exc)
        return 1

    for failure in summary.batch.failures:
        logger.warning("Station %s failed during %s: %s", failure.station_id, failure.stage, failure.message)
    if summary.dedup.new:
        logger.info("New listings detected (%d):", len(summary.dedup.new))
        for listing in summary.dedup.new:
            logger.info(
                "%s | %s | %s %s | %s",
                listing.title,
                listing.price or "N/A",
                listing.metro_title,
                listing.metro_value or "N/A",
                listing.link,
            )
    else:
        logger.info("No new listings detected in this run.")

    if args.export and not args.dry_run:
        export_path = database.export_rentals_to_xlsx(args.export, query_id=summary.query_id)
        logger.info("Exported rentals to %s", export_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
