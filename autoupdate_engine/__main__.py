"""
Standalone entrypoint for the auto-update controller.

Runs batch passes over enabled intents on an interval, separately from the
API server. Both processes share the database, so leases taken here also
block manual upgrades issued through the API.

Usage:
    python -m autoupdate_engine [OPTIONS]
    autoupdate-controller [OPTIONS]  (after pip install)

Environment Variables:
    AU_DB_PATH: Database path (default: autoupdate.db)
    AU_RUN_INTERVAL: Seconds between batch passes (default: 3600)
    AU_UPGRADE_TIMEOUT: Seconds before an upgrade attempt fails (default: 600)
    AU_MAX_PARALLEL: Concurrent upgrade attempts per intent (default: 1)
    AU_INVENTORY_FILE: JSON inventory instead of the local Docker endpoint
    AU_VERSIONS_FILE: JSON version map instead of Docker Hub
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from autoupdate_persistence.sqlite_repository import SQLiteAutoUpdateRepository

from .config import (
    build_collaborators,
    build_runner,
    get_database_path,
    get_inventory_file,
    get_versions_file,
)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Auto-update controller - periodic batch passes over enabled intents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  AU_DB_PATH           Database path (default: autoupdate.db)
  AU_RUN_INTERVAL      Seconds between batch passes (default: 3600)
  AU_UPGRADE_TIMEOUT   Seconds before an upgrade attempt fails (default: 600)
  AU_MAX_PARALLEL      Concurrent upgrade attempts per intent (default: 1)
  AU_INVENTORY_FILE    JSON inventory instead of the local Docker endpoint
  AU_VERSIONS_FILE     JSON version map instead of Docker Hub

Note: Command-line arguments override environment variables.

Examples:
  # Run with default settings
  autoupdate-controller

  # Run a single pass and exit
  autoupdate-controller --once

  # Pass every 10 minutes against a custom database
  autoupdate-controller --db-path /tmp/autoupdate.db --interval 600

  # Enable debug logging
  autoupdate-controller --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to SQLite database file (default: AU_DB_PATH env or autoupdate.db)",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between batch passes (default: AU_RUN_INTERVAL env or 3600)",
    )

    parser.add_argument(
        "--upgrade-timeout",
        type=float,
        default=None,
        help="Seconds before an upgrade attempt fails (default: AU_UPGRADE_TIMEOUT env or 600)",
    )

    parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Concurrent upgrade attempts per intent (default: AU_MAX_PARALLEL env or 1)",
    )

    parser.add_argument(
        "--inventory-file",
        type=str,
        default=None,
        help="JSON inventory file (default: AU_INVENTORY_FILE env or local Docker)",
    )

    parser.add_argument(
        "--versions-file",
        type=str,
        default=None,
        help="JSON version map file (default: AU_VERSIONS_FILE env or Docker Hub)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single batch pass and exit",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


async def run_controller(args: argparse.Namespace) -> None:
    """
    Initialize the batch runner and run it until SIGINT/SIGTERM.

    With --once a single pass runs and the function returns.
    """
    db_path = get_database_path(args.db_path)
    inventory_file = get_inventory_file(args.inventory_file)
    versions_file = get_versions_file(args.versions_file)

    repository = SQLiteAutoUpdateRepository(db_path)
    await repository.initialize()
    logger.info("Database initialized")

    inventory, versions, action = build_collaborators(inventory_file, versions_file)
    runner = build_runner(
        repository,
        inventory,
        versions,
        action,
        run_interval=args.interval,
        upgrade_timeout=args.upgrade_timeout,
        max_parallel=args.max_parallel,
    )

    logger.info("Starting auto-update controller")
    logger.info(f"  Database: {db_path}")
    logger.info(f"  Inventory: {inventory_file or 'local Docker endpoint'}")
    logger.info(f"  Versions: {versions_file or 'Docker Hub'}")
    logger.info(f"  Run interval: {runner.run_interval}s")
    logger.info(f"  Upgrade timeout: {runner.executor.upgrade_timeout}s")
    logger.info(f"  Max parallel: {runner.executor.max_parallel}")

    if args.once:
        try:
            await runner.run_pass()
        finally:
            await repository.close()
        return

    shutdown_event = asyncio.Event()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await runner.start()
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Controller error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Stopping controller...")
        await runner.stop()
        logger.info("Closing database connections...")
        await repository.close()
        logger.info("Controller stopped cleanly")


def main(argv: list[str] | None = None) -> int:
    """
    Main entrypoint for the controller.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_controller(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
