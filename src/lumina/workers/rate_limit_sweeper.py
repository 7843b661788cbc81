"""Periodic cleanup of stale login rate limit entries."""

import asyncio
from typing import Awaitable, Callable

import structlog

from lumina.services.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


async def run_rate_limit_sweeper(
    rate_limiter: RateLimiter,
    interval_seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Sweep the limiter every interval_seconds until cancelled.

    Args:
        rate_limiter: Process-wide limiter owned by the application
        interval_seconds: Delay between sweeps
        sleep: Injected for tests
    """
    logger.info("worker.started", worker="rate_limit_sweeper", interval=interval_seconds)

    try:
        while True:
            await sleep(interval_seconds)
            removed = rate_limiter.sweep()
            if removed:
                logger.debug("rate_limit.swept", removed=removed, remaining=len(rate_limiter))

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="rate_limit_sweeper")
        raise
