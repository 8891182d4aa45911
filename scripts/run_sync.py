"""
Script to run one sync from the command line

Usage:
    python scripts/run_sync.py rawg historical
    python scripts/run_sync.py cheapshark hot_update
    python scripts/run_sync.py rawg refresh --start-id 1 --end-id 5000
    python scripts/run_sync.py cheapshark search --title "Hollow Knight"
"""

import argparse
import asyncio
import signal
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.exceptions import SyncException
from core.logging import setup_logging
from ingestion.sync_service import open_sync_service
from models.base import Source, SyncStatus, SyncType

logger = logging.getLogger(__name__)

EXTRA_OPERATIONS = {
    "refresh": Source.RAWG,
    "search": Source.CHEAPSHARK,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a sync for one source")
    parser.add_argument("source", choices=[s.value for s in Source])
    parser.add_argument(
        "operation",
        choices=[t.value for t in SyncType] + list(EXTRA_OPERATIONS),
        help="sync type, or 'refresh' (rawg) / 'search' (cheapshark)"
    )
    parser.add_argument("--start-id", type=int, default=1)
    parser.add_argument("--end-id", type=int)
    parser.add_argument("--title")
    args = parser.parse_args(argv)

    required_source = EXTRA_OPERATIONS.get(args.operation)
    if required_source is not None and args.source != required_source.value:
        parser.error(f"'{args.operation}' is only available for {required_source.value}")
    if args.operation == "refresh" and args.end_id is None:
        parser.error("refresh needs --end-id")
    if args.operation == "search" and not args.title:
        parser.error("search needs --title")
    return args


async def run_sync(args) -> int:
    """Run the requested operation; returns the process exit code"""
    async with open_sync_service(settings) as service:
        if args.operation == "refresh":
            result = await service.refresh_rawg_games(args.start_id, args.end_id)
            logger.info(f"RAWG refresh finished: {result}")
            return 0

        if args.operation == "search":
            result = await service.search_and_sync_cheapshark(args.title)
            logger.info(f"CheapShark search finished: {result}")
            return 0

        service.check_supported(args.source, args.operation)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, service.request_stop)
            loop.add_signal_handler(signal.SIGTERM, service.request_stop)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable; Ctrl+C will abort without a clean stop")

        summary = await service.perform_sync(args.source, args.operation)

    logger.info(
        f"{summary.source} {summary.sync_type} sync {summary.status}: "
        f"processed={summary.items_processed}, added={summary.items_added}, "
        f"failed={summary.items_failed}, cursor={summary.last_cursor}, "
        f"duration={summary.duration_seconds:.1f}s"
    )
    if summary.error_message:
        logger.error(f"Error: {summary.error_message}")
    return 0 if summary.status == SyncStatus.COMPLETED else 1


def main(argv=None):
    setup_logging()
    args = parse_args(argv)
    try:
        exit_code = asyncio.run(run_sync(args))
    except SyncException as e:
        logger.error(f"Sync failed: {e}", extra={"error_context": e.to_dict()})
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
