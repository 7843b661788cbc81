"""CLI command for failing generation jobs stuck in a non-terminal state.

A job is stale when it is still starting/processing long after the poll
deadline, e.g. because the process polling it died and was never restarted.

Usage:
    python -m lumina.cli [OPTIONS]

Examples:
    # Fail jobs older than the poll deadline plus a grace period
    python -m lumina.cli

    # Custom age threshold (seconds)
    python -m lumina.cli --older-than 3600

    # Dry run (no database writes)
    python -m lumina.cli --dry-run

    # Verbose logging
    python -m lumina.cli -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from datetime import timedelta
from typing import Optional, Sequence

import structlog

from lumina.core import timezone  # noqa: F401
from lumina.core.config import Settings, configure_logging
from lumina.core.database import setup_db_session
from lumina.core.timezone import utcnow
from lumina.uow import create_uow_factory

logger = structlog.get_logger()

GRACE_PERIOD_SECONDS = 60
STALE_JOB_MESSAGE = "Generation expired without a result"


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Fail generation jobs stuck in starting/processing",
        epilog="Defaults to MAX_POLL_DURATION_SECONDS plus a one minute grace period",
    )

    parser.add_argument(
        "--older-than",
        type=float,
        dest="older_than",
        help="Minimum job age in seconds (default: poll deadline + 60)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count stale jobs without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None, uow_factory=None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    older_than_seconds = args.older_than
    if older_than_seconds is None:
        older_than_seconds = settings.max_poll_duration_seconds + GRACE_PERIOD_SECONDS
    cutoff = utcnow() - timedelta(seconds=older_than_seconds)

    logger.info("cli.started", older_than_seconds=older_than_seconds, dry_run=args.dry_run)

    if uow_factory is None:
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
        uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            if args.dry_run:
                count = await uow.generations.count_stale(cutoff)
            else:
                count = await uow.generations.expire_stale(cutoff, STALE_JOB_MESSAGE)

        print("\n" + "=" * 60)
        print("Stale Generation Summary")
        print("=" * 60)
        print(f"Cutoff (UTC): {cutoff.isoformat(timespec='seconds')}")
        print(f"Stale jobs {'found' if args.dry_run else 'expired'}: {count}")
        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")
        print("=" * 60 + "\n")

        logger.info("cli.completed", stale_jobs=count, dry_run=args.dry_run)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
