"""In-memory login attempt limiter.

Tracks attempts per identifier (normalized email) inside a fixed window and
blocks the identifier for a fixed duration once the maximum is reached.

State is process-local: it does not survive restarts and is not shared between
processes. One instance is created per process (stored on ``app.state``) and
swept periodically by ``run_rate_limit_sweeper``.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()

SECONDS_PER_MINUTE = 60


@dataclass
class RateLimitEntry:
    """Attempt bookkeeping for one identifier.

    Attributes:
        attempts: Attempts counted in the current window
        first_attempt_at: Unix timestamp of the first attempt in the window
        blocked_until: Unix timestamp until which every attempt is rejected
    """

    attempts: int
    first_attempt_at: float
    blocked_until: Optional[float] = None


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining_attempts: Optional[int] = None
    reset_time: Optional[float] = None


class RateLimiter:
    """Fixed-window attempt limiter with a block period.

    Example:
        >>> limiter = RateLimiter(max_attempts=5, window_seconds=900, block_seconds=1800)
        >>> result = limiter.check("user@example.com")
        >>> result.allowed, result.remaining_attempts
        (True, 4)
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        block_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _reset(self, identifier: str, now: float) -> RateLimitResult:
        self._entries[identifier] = RateLimitEntry(attempts=1, first_attempt_at=now)
        return RateLimitResult(allowed=True, remaining_attempts=self.max_attempts - 1)

    def check(self, identifier: str) -> RateLimitResult:
        """Count an attempt for identifier and decide whether it is allowed.

        Args:
            identifier: Key to throttle (normalized email)

        Returns:
            RateLimitResult with remaining attempts when allowed,
            or the block expiry timestamp when denied
        """
        now = self._clock()
        entry = self._entries.get(identifier)

        if entry is None:
            return self._reset(identifier, now)

        if entry.blocked_until is not None:
            if entry.blocked_until > now:
                return RateLimitResult(allowed=False, reset_time=entry.blocked_until)
            # Block expired
            return self._reset(identifier, now)

        if now - entry.first_attempt_at > self.window_seconds:
            return self._reset(identifier, now)

        if entry.attempts >= self.max_attempts:
            entry.blocked_until = now + self.block_seconds
            logger.warning(
                "rate_limit.blocked",
                attempts=entry.attempts,
                blocked_seconds=self.block_seconds,
            )
            return RateLimitResult(allowed=False, reset_time=entry.blocked_until)

        entry.attempts += 1
        return RateLimitResult(allowed=True, remaining_attempts=self.max_attempts - entry.attempts)

    def record_failed_attempt(self, identifier: str) -> None:
        """Count a failed attempt (same bookkeeping as check, result discarded)."""
        self.check(identifier)

    def clear_attempts(self, identifier: str) -> None:
        """Forget identifier entirely (called after a successful login)."""
        self._entries.pop(identifier, None)

    def attempt_count(self, identifier: str) -> int:
        entry = self._entries.get(identifier)
        return entry.attempts if entry else 0

    def is_blocked(self, identifier: str) -> bool:
        entry = self._entries.get(identifier)
        if entry is None or entry.blocked_until is None:
            return False
        return entry.blocked_until > self._clock()

    def sweep(self) -> int:
        """Drop stale entries to bound memory use.

        Removes entries whose block expired more than one window ago, and
        unblocked entries whose first attempt is older than twice the window.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        extended_window = self.window_seconds * 2
        stale = []

        for identifier, entry in self._entries.items():
            if entry.blocked_until is not None:
                if entry.blocked_until <= now and now - entry.blocked_until > self.window_seconds:
                    stale.append(identifier)
            elif now - entry.first_attempt_at > extended_window:
                stale.append(identifier)

        for identifier in stale:
            del self._entries[identifier]

        return len(stale)

    def seconds_until(self, reset_time: float) -> float:
        return max(reset_time - self._clock(), 0.0)

    def format_reset_time(self, reset_time: float) -> str:
        """Human-readable wait estimate, rounded up to whole minutes (minimum 1 minute)."""
        minutes = math.ceil(self.seconds_until(reset_time) / SECONDS_PER_MINUTE)
        if minutes <= 1:
            return "1 minute"
        return f"{minutes} minutes"
